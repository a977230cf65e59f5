from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from mdm_server.app import create_app
from mdm_server.db import DirectoryRecord
from mdm_shared.enums import AccountType, TelemetryCategory
from mdm_shared.timezone import to_canonical


def test_report_creates_device_summary_and_records(client, db, directory_user, make_report) -> None:
    directory_user("jane.doe@example.com")
    response = client.post("/agent/report", json=make_report())
    assert response.status_code == 200

    body = response.json()
    assert body["message"] == "Agent data received successfully"
    assert body["categories"] == {category.value: True for category in TelemetryCategory}

    device = db.get_device(body["device_id"])
    assert device.serial_no == "C02XK0AAJGH5"
    assert device.agent_version == "1.4.0"
    assert device.status == "online"
    assert db.count_summaries(device.id) == 1
    for category in TelemetryCategory:
        assert db.count_telemetry(device.id, category) == 1


def test_repeat_reports_update_single_device(client, db, directory_user, make_report) -> None:
    directory_user("jane.doe@example.com")
    first = client.post("/agent/report", json=make_report(os_version="14.5"))
    second = client.post("/agent/report", json=make_report(os_version="14.6", computer_name="renamed"))
    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["device_id"] == second.json()["device_id"]

    device = db.get_device(first.json()["device_id"])
    assert device.os_version == "14.6"
    assert device.computer_name == "renamed"
    assert db.count_summaries(device.id) == 1
    assert db.count_telemetry(device.id, TelemetryCategory.SYSTEM_INFO) == 2


def test_known_device_skips_directory_check(client, db, directory_user, make_report) -> None:
    directory_user("jane.doe@example.com")
    assert client.post("/agent/report", json=make_report()).status_code == 200

    db.delete_directory_user(db.get_directory_user("jane.doe@example.com").gid)
    assert client.post("/agent/report", json=make_report()).status_code == 200


def test_missing_required_fields_rejected(client, make_report) -> None:
    for field in ("user", "serial_no", "os_type"):
        report = make_report()
        report.pop(field)
        response = client.post("/agent/report", json=report)
        assert response.status_code == 400
        assert response.json()["message"] == "Missing required fields: user, serial_no, os_type"

    blank = client.post("/agent/report", json=make_report(serial_no="   "))
    assert blank.status_code == 400


def test_email_owning_another_device_conflicts(client, db, directory_user, make_report) -> None:
    directory_user("jane.doe@example.com")
    assert client.post("/agent/report", json=make_report(serial_no="SERIAL-A")).status_code == 200

    response = client.post("/agent/report", json=make_report(serial_no="SERIAL-B"))
    assert response.status_code == 409
    assert db.get_device_by_serial("SERIAL-B") is None


def test_unknown_directory_user_rejected(client, db, make_report) -> None:
    response = client.post("/agent/report", json=make_report(user="ghost@example.com"))
    assert response.status_code == 404
    assert db.get_device_by_serial("C02XK0AAJGH5") is None


def test_service_account_rejected_without_writes(client, db, directory_user, make_report) -> None:
    directory_user("build.bot@example.com", account_type=AccountType.SERVICE)
    response = client.post("/agent/report", json=make_report(user="build.bot@example.com"))
    assert response.status_code == 401
    assert db.get_device_by_serial("C02XK0AAJGH5") is None


def test_errored_items_mark_category_non_compliant(client, db, directory_user, make_report) -> None:
    directory_user("jane.doe@example.com")
    report = make_report()
    report["data"]["antivirus_info"] = [{"status": "failed to execute query"}]
    report["data"]["password_manager_info"] = [{"status": "no_data_found for password managers"}]

    response = client.post("/agent/report", json=report)
    assert response.status_code == 200
    categories = response.json()["categories"]
    assert categories["antivirus_info"] is False
    assert categories["password_manager_info"] is False
    assert categories["system_info"] is True

    device_id = response.json()["device_id"]
    record = db.latest_telemetry(device_id, TelemetryCategory.ANTIVIRUS_INFO)
    assert record.error == "failed to execute query"


def test_screen_lock_grace_period_rule(client, db, directory_user, make_report) -> None:
    directory_user("jane.doe@example.com")
    report = make_report()
    report["data"]["screen_lock_info"] = [{"enabled": "1", "grace_period": "7200"}]
    response = client.post("/agent/report", json=report)
    assert response.json()["categories"]["screen_lock_info"] is False

    report["data"]["screen_lock_info"] = [{"enabled": "1", "grace_period": "soon"}]
    response = client.post("/agent/report", json=report)
    assert response.json()["categories"]["screen_lock_info"] is True


def test_absent_and_unknown_categories(client, directory_user, make_report) -> None:
    directory_user("jane.doe@example.com")
    report = make_report(data={"system_info": [{"hostname": "h"}], "firewall_info": [{"on": "1"}], "apps_info": []})
    response = client.post("/agent/report", json=report)
    assert response.status_code == 200
    categories = response.json()["categories"]
    assert categories["system_info"] is True
    assert categories["apps_info"] is False
    assert categories["disk_encryption_info"] is False
    assert "firewall_info" not in categories


def test_category_write_failure_is_partial(client, db, directory_user, make_report, monkeypatch) -> None:
    directory_user("jane.doe@example.com")
    real_append = db.append_telemetry

    def flaky_append(device_id, category, timestamp, items, error):
        if category is TelemetryCategory.APPS_INFO:
            raise OperationalError("INSERT INTO apps_info", {}, Exception("disk I/O error"))
        return real_append(device_id, category, timestamp, items, error)

    monkeypatch.setattr(db, "append_telemetry", flaky_append)
    response = client.post("/agent/report", json=make_report())
    assert response.status_code == 200

    categories = response.json()["categories"]
    assert categories["apps_info"] is False
    assert categories["system_info"] is True

    device_id = response.json()["device_id"]
    assert db.count_telemetry(device_id, TelemetryCategory.APPS_INFO) == 0
    assert db.count_telemetry(device_id, TelemetryCategory.SYSTEM_INFO) == 1
    assert db.get_summary(device_id).apps_info is False


def test_last_report_uses_agent_timestamp(client, db, directory_user, make_report) -> None:
    directory_user("jane.doe@example.com")
    sent = datetime.now(UTC) - timedelta(days=3)
    response = client.post("/agent/report", json=make_report(timestamp=sent.isoformat()))
    device_id = response.json()["device_id"]

    stored = to_canonical(db.get_summary(device_id).last_report)
    assert abs((stored - sent).total_seconds()) < 1
    assert response.json()["timestamp"].endswith("+05:30")
    assert db.get_device(device_id).status == "offline"


def test_unparsable_timestamp_falls_back_to_receipt(client, directory_user, make_report) -> None:
    directory_user("jane.doe@example.com")
    before = datetime.now(UTC)
    response = client.post("/agent/report", json=make_report(timestamp="not-a-date"))
    assert response.status_code == 200
    received = datetime.fromisoformat(response.json()["timestamp"])
    assert received >= before - timedelta(seconds=1)


def test_legacy_devices_path_accepts_reports(client, directory_user, make_report) -> None:
    directory_user("jane.doe@example.com")
    response = client.post("/devices/agent/report", json=make_report())
    assert response.status_code == 200


def test_oversized_payload_rejected(client, server_config) -> None:
    huge = b'{"user":"' + (b"a" * (server_config.max_payload_bytes + 10)) + b'"}'
    response = client.post("/agent/report", content=huge, headers={"Content-Type": "application/json"})
    assert response.status_code == 413


def test_rate_limit_applied_per_serial(server_config, make_report) -> None:
    app = create_app(replace(server_config, ingest_rate_limit_per_minute=1))
    with TestClient(app) as tc:
        tc.app.state.db.upsert_directory_users(
            [
                DirectoryRecord(email="jane.doe@example.com", name="Jane Doe", created_at=None),
                DirectoryRecord(email="john.roe@example.com", name="John Roe", created_at=None),
            ]
        )
        first = tc.post("/agent/report", json=make_report())
        second = tc.post("/agent/report", json=make_report())
        other = tc.post("/agent/report", json=make_report(serial_no="OTHER-1", user="john.roe@example.com"))

    assert first.status_code == 200
    assert second.status_code == 429
    assert other.status_code == 200


def test_future_timestamp_replaced_by_receipt_time(client, db, directory_user, make_report) -> None:
    directory_user("jane.doe@example.com")
    before = datetime.now(UTC)
    forged = (before + timedelta(days=3650)).isoformat()
    response = client.post("/agent/report", json=make_report(timestamp=forged))
    assert response.status_code == 200

    device_id = response.json()["device_id"]
    last_report = to_canonical(db.get_summary(device_id).last_report)
    assert before - timedelta(seconds=1) <= last_report <= datetime.now(UTC) + timedelta(seconds=1)
    assert to_canonical(db.get_device(device_id).last_seen) == last_report


def test_ingest_survives_redis_outage_in_production(server_config, make_report) -> None:
    app = create_app(replace(server_config, environment="production", redis_url="redis://127.0.0.1:6399/0"))
    with TestClient(app) as tc:
        tc.app.state.db.upsert_directory_users(
            [DirectoryRecord(email="jane.doe@example.com", name="Jane Doe", created_at=None)]
        )
        response = tc.post("/agent/report", json=make_report())
        login = tc.post("/auth/login", json={"email": "admin@example.com", "password": "ChangeMeNow!123"})

    assert response.status_code == 200
    assert login.status_code == 429
