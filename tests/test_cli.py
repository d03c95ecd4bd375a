from PIL import Image

from token_composer import cli
from token_composer.errors import DecodeError
from token_composer.models.overlay import Bitmap
from token_composer.render import compositor


def _fake_loader(urls):
    return [Bitmap(url, Image.new("RGBA", (7, 3), (9, 9, 9, 255))) for url in urls]


def test_cli_compose_writes_output(monkeypatch, tmp_path):
    received = {}

    def fake_compose(token, **kwargs):
        received["token"] = token
        received["kwargs"] = kwargs
        return compositor.compose_urls(["a"], loader=_fake_loader)

    monkeypatch.setattr(cli, "compose_token_param", fake_compose)
    target = tmp_path / "composed.png"

    code = cli.main(["compose", "1-2", "-o", str(target), "--canvas-policy", "root"])

    assert code == 0
    assert received == {"token": "1-2", "kwargs": {"canvas_policy": "root"}}
    assert Image.open(target).size == (7, 3)


def test_cli_missing_token_prints_prompt(capsys):
    code = cli.main(["compose"])

    assert code == 2
    assert "token={collectionId}-{tokenId}" in capsys.readouterr().err


def test_cli_failure_prints_generic_message(monkeypatch, capsys, tmp_path):
    def fake_compose(token, **kwargs):
        raise DecodeError("Token data is not valid JSON")

    monkeypatch.setattr(cli, "compose_token_param", fake_compose)
    target = tmp_path / "out.png"

    code = cli.main(["compose", "1-2", "-o", str(target)])

    assert code == 1
    assert "An error occurred" in capsys.readouterr().err
    assert not target.exists()
