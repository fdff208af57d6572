"""
Log redaction: donor contact details never reach log output.
"""
import json
import logging

from observability import SanitizedJSONFormatter, log_domain_event, sanitize_dict


def make_record(**extra):
    record = logging.LogRecord("lifeline.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_sanitize_dict_redacts_nested_fields():
    data = {"donor_id": "d1", "phone": "+880", "contact": {"email": "a@b.com", "city": "Dhaka"}}
    clean = sanitize_dict(data)
    assert clean["donor_id"] == "d1"
    assert clean["phone"] == "[REDACTED]"
    assert clean["contact"] == {"email": "[REDACTED]", "city": "Dhaka"}


def test_formatter_emits_json_without_pii():
    record = make_record(emergency_contact_phone="+8801800000000", thread_id="t1")
    output = json.loads(SanitizedJSONFormatter().format(record))

    assert output["message"] == "hello world"
    assert output["level"] == "INFO"
    assert output["thread_id"] == "t1"
    assert output["emergency_contact_phone"] == "[REDACTED]"


def test_domain_event_levels(caplog):
    with caplog.at_level(logging.INFO, logger="lifeline.events"):
        log_domain_event("donation_recorded", entity_type="Donation", entity_id="x1", notes="private")
        log_domain_event("request_status_rejected", result="rejected")

    ok, rejected = caplog.records
    assert ok.levelno == logging.INFO
    assert ok.event == "donation_recorded"
    assert ok.notes == "[REDACTED]"
    assert rejected.levelno == logging.WARNING
