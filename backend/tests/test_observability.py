import json
import logging

from account_lifecycle.core import metrics
from account_lifecycle.core.logging_config import JsonFormatter, redact_extras, request_id_ctx_var
from account_lifecycle.middleware.security import redact_payload


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("account_lifecycle.test", logging.INFO, __file__, 1, "account_deletion_initiated", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_inlines_extras_and_redacts_tokens() -> None:
    token = request_id_ctx_var.set("req-1")
    try:
        record = _record(user_id="u-1", restoration_token="secret-token", request_id="req-1")
        payload = json.loads(JsonFormatter().format(record))
    finally:
        request_id_ctx_var.reset(token)

    assert payload["message"] == "account_deletion_initiated"
    assert payload["user_id"] == "u-1"
    assert payload["restoration_token"] == "***"
    assert payload["request_id"] == "req-1"


def test_redact_extras_masks_secrets() -> None:
    redacted = redact_extras({"cron_secret": "abc", "Authorization": "Bearer x", "run_id": "r1"})
    assert redacted == {"cron_secret": "***", "Authorization": "***", "run_id": "r1"}


def test_audit_payload_redaction() -> None:
    body = {"token": "restore-me", "provider": "google", "nested": {"access_token": "jwt", "email": "a@b.c"}}
    assert redact_payload(body) == {"token": "***", "provider": "google", "nested": {"access_token": "***", "email": "***"}}


def test_metrics_snapshot_counts_sweeps() -> None:
    metrics.record_sweep(succeeded=3, failed=1, skipped=2)
    metrics.record_deletion_initiated()

    snapshot = metrics.snapshot()
    assert snapshot["sweep_runs"] == 1
    assert snapshot["sweep_accounts_deleted"] == 3
    assert snapshot["sweep_accounts_failed"] == 1
    assert snapshot["sweep_accounts_skipped"] == 2
    assert snapshot["deletions_initiated"] == 1
