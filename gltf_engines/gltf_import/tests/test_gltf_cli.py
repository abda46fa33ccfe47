import json

from gltf_engines.gltf_import.cli import main


def test_cli_prints_hierarchy(tmp_path, triangle_glb, capsys):
    source = tmp_path / "tri.glb"
    source.write_bytes(triangle_glb)
    assert main([str(source), "--sync"]) == 0
    tree = json.loads(capsys.readouterr().out)
    assert tree["name"] == "glTF Scene tri"
    assert tree["children"][0]["name"] == "Tri"


def test_cli_async_inactive(tmp_path, triangle_glb, capsys):
    source = tmp_path / "tri.glb"
    source.write_bytes(triangle_glb)
    assert main([str(source), "--inactive"]) == 0
    assert json.loads(capsys.readouterr().out)["active"] is False


def test_cli_reports_errors(tmp_path, capsys):
    source = tmp_path / "broken.glb"
    source.write_bytes(b"glTF" + b"\x00" * 8)
    assert main([str(source), "--sync"]) == 1
    assert "gltf.format" in capsys.readouterr().err
