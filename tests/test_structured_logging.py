import json

from tuckshop.observability.logging import log
from tuckshop.settings import settings


def _last_line(capsys):
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


def test_redaction_masks_bodies_and_phones(capsys, monkeypatch):
    monkeypatch.setattr(settings, "ENABLE_PII_REDACTION", True)

    log(event="turn_processed", phone="15550001111", reply="secret menu", password="hunter22", hops=2)

    line = _last_line(capsys)
    assert line["event"] == "turn_processed"
    assert line["phone"] == "*******1111"
    assert line["reply"] == "[REDACTED:11chars]"
    assert line["password"] == "[REDACTED:8chars]"
    assert line["hops"] == 2


def test_redaction_off_logs_verbatim(capsys, monkeypatch):
    monkeypatch.setattr(settings, "ENABLE_PII_REDACTION", False)

    log(event="x", phone="15550001111", text="hi")

    line = _last_line(capsys)
    assert line["phone"] == "15550001111"
    assert line["text"] == "hi"
