import json

import cv2
import numpy as np

from idcard_studio.main import main


def test_spare_ids_command(capsys):
    assert main(["spare-ids", "--used", "0", "1", "2", "3", "--count", "2"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 2
    assert all("min distance" in line for line in lines)


def test_render_command_writes_filled_svg(tmp_path, card_svg):
    template = tmp_path / "card.svg"
    template.write_text(card_svg, encoding="utf-8")
    data = tmp_path / "ada.json"
    data.write_text(json.dumps({"name": "Ada Lovelace"}), encoding="utf-8")
    out = tmp_path / "out" / "ada.svg"

    assert main(["render", str(template), "-o", str(out), "--data", str(data)]) == 0
    assert "Ada Lovelace" in out.read_text(encoding="utf-8")


def test_sheet_then_calibrate_round_trip(tmp_path):
    config = tmp_path / "studio.json"
    config.write_text(json.dumps({"sheet": {"columns": 5, "rows": 3, "px_per_mm": 20}}), encoding="utf-8")
    sheet = tmp_path / "sheet.png"

    assert main(["--config", str(config), "sheet", "-o", str(sheet), "--colors", "#ffe08a", "#a8d8ff"]) == 0
    assert sheet.exists()

    rectified = tmp_path / "flat.png"
    code = main(["--config", str(config), "calibrate", str(sheet), "--tolerance", "0.5", "--rectified", str(rectified)])
    assert code == 0
    assert rectified.exists()


def test_missing_image_is_reported_not_raised(tmp_path):
    assert main(["detect", str(tmp_path / "nothing.png")]) == 2


def test_color_profile_then_corrected_render(tmp_path, card_svg):
    config = tmp_path / "studio.json"
    config.write_text(json.dumps({"sheet": {"columns": 5, "rows": 3, "px_per_mm": 20}}), encoding="utf-8")
    sheet = tmp_path / "sheet.png"
    assert main(["--config", str(config), "sheet", "-o", str(sheet), "--colors", "#999999", "#336699"]) == 0

    # the printer comes out 20 levels too red and 10 too little blue
    printed = np.clip(cv2.imread(str(sheet)).astype(int) + np.array([-10, 5, 20]), 0, 255).astype(np.uint8)
    photo = tmp_path / "photo.png"
    cv2.imwrite(str(photo), printed)

    profile = tmp_path / "profile.json"
    args = ["--config", str(config), "color-profile", str(photo), "-o", str(profile), "--colors", "#999999", "#336699", "--name", "lab"]
    assert main(args) == 0
    saved = json.loads(profile.read_text(encoding="utf-8"))
    assert saved["version"] == "1.0"
    (entry,) = saved["profiles"]
    assert entry["name"] == "lab"
    assert entry["adjustments"]["#999999"] == {"r": 20, "g": 5, "b": -10}

    template = tmp_path / "card.svg"
    template.write_text(card_svg, encoding="utf-8")
    out = tmp_path / "card-out.svg"
    assert main(["render", str(template), "-o", str(out), "--profile", str(profile)]) == 0
    rendered = out.read_text(encoding="utf-8")
    # the photo frame stroke is #999999 in the template
    assert 'stroke="#8594a3"' in rendered

    assert main(["render", str(template), "-o", str(out), "--profile", str(profile), "--profile-name", "other"]) == 2
