import argparse
import json
import logging
import sys
from pathlib import Path

import cv2

from .calibration.color_profile import analyze_color_chart, apply_color_correction, load_profiles, save_profiles
from .calibration.registration import check_registration, rectify
from .calibration.spare_ids import find_spare_ids
from .config import LOG_DIR
from .config_models import load_config
from .fields.field_parser import UserRecord, build_card_data
from .fields.models import ImageValue
from .fields.template_parser import load_template
from .layout.export_utils import save_sheet
from .layout.sheet import PrintSheetGenerator, solid_fill_renderer, svg_card_renderer
from .logger import setup_logging
from .markers.detector import MarkerDetector
from .rendering.engine import render
from .rendering.fonts import FontResolver
from .rendering.rasterize import rasterize_svg
from .unit_utils import dpi_to_px_per_mm, parse_dimensions

logger = logging.getLogger("idcard_studio.main")


def _read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _card_data(imported, data_path=None, record_path=None):
    """CardData from a JSON value file and/or a JSON person record."""
    data = {}
    if record_path:
        record = UserRecord.model_validate(_read_json(record_path))
        data.update(build_card_data(imported.fields, record))
    if data_path:
        kinds = {f.id: f.kind for f in imported.fields}
        for key, value in _read_json(data_path).items():
            if kinds.get(key) == "image":
                data[key] = ImageValue(src=value) if isinstance(value, str) else ImageValue.model_validate(value)
            else:
                data[key] = str(value)
    return data


def _render_cards(args, config):
    imported = load_template(args.template)
    resolver = FontResolver(config.available_fonts) if config.available_fonts is not None else None
    profile = _pick_profile(args.profile, args.profile_name) if args.profile else None
    data_paths = args.data or [None]
    documents = []
    for data_path in data_paths:
        data = _card_data(imported, data_path, args.record)
        document = render(imported.template, imported.fields, data, config.render, resolver)
        if profile is not None:
            document = apply_color_correction(document, profile)
        documents.append(document)
    return imported, documents


def _pick_profile(path, name=None):
    profiles = load_profiles(path)
    for profile in profiles:
        if name is None or profile.name == name:
            return profile
    raise ValueError(f"No colour profile named {name!r} in {path}" if name else f"No colour profiles in {path}")


def cmd_render(args, config):
    if args.embed_images:
        config.render.embed_images = True
    imported, documents = _render_cards(args, config)
    out = Path(args.output)
    out.parent.mkdir(parents=True, exist_ok=True)
    if out.suffix.lower() == ".svg":
        out.write_text(documents[0], encoding="utf-8")
    else:
        w_mm, h_mm = imported.template.size_mm()
        px_per_mm = config.sheet.px_per_mm
        raster = rasterize_svg(documents[0], round(w_mm * px_per_mm), round(h_mm * px_per_mm))
        save_sheet(raster, out, px_per_mm)
    print(f"Done: rendered {args.template} to {out}")


def cmd_sheet(args, config):
    sheet = config.sheet
    if args.size:
        sheet.sheet_width_mm, sheet.sheet_height_mm = parse_dimensions(args.size)
    for name in ("columns", "rows", "gap_mm", "margin_mm", "px_per_mm"):
        value = getattr(args, name)
        if value is not None:
            setattr(sheet, name, value)
    if args.dpi is not None:
        sheet.px_per_mm = dpi_to_px_per_mm(args.dpi)
    if args.no_markers:
        sheet.use_markers = False

    renderer = None
    if args.template:
        _, documents = _render_cards(args, config)
        renderer = svg_card_renderer(documents[0] if len(documents) == 1 else documents)
    elif args.colors:
        renderer = solid_fill_renderer(args.colors)

    gen = PrintSheetGenerator(sheet, card_renderer=renderer, dict_name=config.detector.dictionary)
    gen.build()
    path = gen.save(args.output)
    print(f"Done: created {path}")


def _load_image(path):
    image = cv2.imread(str(path))
    if image is None:
        raise FileNotFoundError(f"Could not read image: {path}")
    return image


def cmd_detect(args, config):
    image = _load_image(args.image)
    detector = MarkerDetector(config.detector, debug_mode=bool(args.debug_dir), output_dir=args.debug_dir)
    detections = detector.detect(image)
    result = [
        {"id": d.identity, "corners": d.corners.round(2).tolist(), "rotation": d.rotation, "hamming": d.hamming}
        for d in detections
    ]
    print(json.dumps(result, indent=2))


def cmd_calibrate(args, config):
    image = _load_image(args.image)
    report = check_registration(image, config.sheet, config.detector, debug_mode=bool(args.debug_dir), output_dir=args.debug_dir)
    print(json.dumps(report.to_dict(), indent=2))
    if args.rectified and report.homography is not None:
        cv2.imwrite(args.rectified, rectify(image, report, config.sheet))
    return 0 if report.passed(args.tolerance) else 1


def cmd_color_profile(args, config):
    image = _load_image(args.image)
    profile = analyze_color_chart(image, config.sheet, args.colors, config.detector, name=args.name, device=args.device)
    path = save_profiles([profile], args.output)
    for color, delta in profile.adjustments.items():
        print(f"{color}\t{delta.r:+d} {delta.g:+d} {delta.b:+d}")
    print(f"Done: saved profile '{profile.name}' to {path}")


def cmd_spare_ids(args, config):
    used = args.used if args.used is not None else list(config.sheet.marker_ids)
    for spare in find_spare_ids(used, args.count, config.detector.dictionary):
        print(f"{spare.identity}\tmin distance {spare.min_distance}")


def build_parser():
    parser = argparse.ArgumentParser(prog="idcard-studio", description="ID card templates, print sheets and registration markers.")
    parser.add_argument("--config", type=str, help="Path to a studio JSON config file.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("--log-file", action="store_true", help="Also write logs to the logs/ directory.")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_card_inputs(p):
        p.add_argument("--data", type=str, action="append", help="JSON file mapping field ids to values. Repeat for several cards.")
        p.add_argument("--record", type=str, help="JSON person record mapped onto the fields automatically.")
        p.add_argument("--profile", type=str, help="Colour profile file to compensate printer drift with.")
        p.add_argument("--profile-name", dest="profile_name", type=str, help="Profile to use when the file holds several.")

    p = sub.add_parser("render", help="Fill an SVG template with data.")
    p.add_argument("template", type=str, help="Path to the SVG template.")
    p.add_argument("-o", "--output", type=str, required=True, help="Output .svg, .png or .pdf.")
    p.add_argument("--embed-images", action="store_true", help="Embed photos as data URIs fitted to their boxes.")
    add_card_inputs(p)
    p.set_defaults(func=cmd_render)

    p = sub.add_parser("sheet", help="Compose an N-up print sheet with corner markers.")
    p.add_argument("-o", "--output", type=str, required=True, help="Output .png, .jpg or .pdf.")
    p.add_argument("--size", type=str, help="Sheet size in mm, e.g. '85.6x54'.")
    p.add_argument("--columns", type=int)
    p.add_argument("--rows", type=int)
    p.add_argument("--gap-mm", dest="gap_mm", type=float)
    p.add_argument("--margin-mm", dest="margin_mm", type=float)
    p.add_argument("--px-per-mm", dest="px_per_mm", type=float)
    p.add_argument("--dpi", type=float, help="Print resolution; overrides --px-per-mm.")
    p.add_argument("--no-markers", action="store_true", help="Fill the corner cells with cards instead of markers.")
    p.add_argument("--template", type=str, help="SVG template to render into each cell.")
    p.add_argument("--colors", type=str, nargs="+", help="Hex colours for swatch cards.")
    add_card_inputs(p)
    p.set_defaults(func=cmd_sheet)

    p = sub.add_parser("detect", help="List the markers found in an image.")
    p.add_argument("image", type=str)
    p.add_argument("--debug-dir", type=str, help="Directory for intermediate debug images.")
    p.set_defaults(func=cmd_detect)

    p = sub.add_parser("calibrate", help="Measure registration error on a photographed sheet.")
    p.add_argument("image", type=str)
    p.add_argument("--tolerance", type=float, default=0.5, help="Maximum corner error in mm to pass.")
    p.add_argument("--rectified", type=str, help="Write the photo warped onto the sheet grid here.")
    p.add_argument("--debug-dir", type=str, help="Directory for intermediate debug images.")
    p.set_defaults(func=cmd_calibrate)

    p = sub.add_parser("color-profile", help="Measure printer colour drift on a photographed swatch sheet.")
    p.add_argument("image", type=str)
    p.add_argument("-o", "--output", type=str, required=True, help="Profile JSON file to write.")
    p.add_argument("--colors", type=str, nargs="+", help="Swatch colours the sheet was printed with (default: the sheet config's).")
    p.add_argument("--name", type=str, default="default")
    p.add_argument("--device", type=str, default="")
    p.set_defaults(func=cmd_color_profile)

    p = sub.add_parser("spare-ids", help="Suggest marker ids far from the ones in use.")
    p.add_argument("--used", type=int, nargs="*", help="Identities already in use (default: the sheet's markers).")
    p.add_argument("--count", type=int, default=4)
    p.set_defaults(func=cmd_spare_ids)
    return parser


def main(argv=None):
    """
    Command-line interface for the ID card studio.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "sheet" and args.template and args.colors:
        parser.error("--template and --colors cannot be combined.")

    setup_logging(args.debug, LOG_DIR if args.log_file else None)
    config = load_config(args.config)
    try:
        return args.func(args, config) or 0
    except (FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
