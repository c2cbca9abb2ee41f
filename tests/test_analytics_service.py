"""AnalyticsService: best-effort download and access accounting."""

from datetime import datetime, timedelta, timezone

from apk_shop import state


def _upload(make_user, caller_of, apk_bytes):
    owner = caller_of(make_user("alice"))
    uploaded = state.versions.upload(owner.user_id, "MyApp", "1.0", "demo", apk_bytes, "MyApp.apk")
    return owner, uploaded.id


class TestRecordDownload:
    def test_appends_event(self, make_user, caller_of, apk_bytes):
        owner, apk_id = _upload(make_user, caller_of, apk_bytes)

        ok = state.analytics.record_download(apk_id, owner, 123, ip_address="10.0.0.1", user_agent="curl")

        assert ok is True
        events = state.analytics.list_downloads()
        assert len(events) == 1
        event = events[0]
        assert event.apk_id == apk_id
        assert event.apk_name == "MyApp"
        assert event.apk_version == "1.0"
        assert event.downloader_name == "alice"
        assert event.ip_address == "10.0.0.1"
        assert event.file_size_downloaded == 123
        assert event.download_success is True

    def test_anonymous_caller(self, make_user, caller_of, apk_bytes):
        _, apk_id = _upload(make_user, caller_of, apk_bytes)
        state.analytics.record_download(apk_id, None, 10)
        event = state.analytics.list_downloads()[0]
        assert event.user_id is None
        assert event.downloader_name is None

    def test_failure_is_swallowed(self, monkeypatch):
        def _broken():
            raise RuntimeError("database is gone")

        monkeypatch.setattr(state.database, "transaction", _broken)
        assert state.analytics.record_download(1, None, 10) is False


class TestListDownloads:
    def test_filters(self, make_user, caller_of, apk_bytes):
        owner, first = _upload(make_user, caller_of, apk_bytes)
        second = state.versions.upload(owner.user_id, "Other", "1.0", "demo", apk_bytes, "Other.apk").id
        state.analytics.record_download(first, owner, 1)
        state.analytics.record_download(second, owner, 2)

        assert [e.apk_id for e in state.analytics.list_downloads(apk_id=second)] == [second]
        assert [e.apk_id for e in state.analytics.list_downloads()] == [second, first]

        future = datetime.now(timezone.utc) + timedelta(days=1)
        assert state.analytics.list_downloads(start=future) == []
        assert len(state.analytics.list_downloads(end=future)) == 2


class TestAccessLog:
    def test_record_and_list(self, make_user, caller_of):
        owner = caller_of(make_user("alice"))
        assert state.analytics.record_access("/api/external/apks", "GET", owner, response_status=200, response_time_ms=3)
        state.analytics.record_access("/api/external/apks", "GET", None, response_status=401)

        logs = state.analytics.list_access_logs()

        assert [log.response_status for log in logs] == [401, 200]
        assert logs[1].user_id == owner.user_id

    def test_failure_is_swallowed(self, monkeypatch):
        def _broken():
            raise RuntimeError("database is gone")

        monkeypatch.setattr(state.database, "transaction", _broken)
        assert state.analytics.record_access("/api/external/apks", "GET") is False
