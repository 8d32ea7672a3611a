"""
Tests for the Application record helpers.
"""
import re

import pytest

from shipyard.services.deployment.application import (
    Application,
    AppStatus,
    can_transition,
    derive_name,
    generate_app_id,
)


class TestDeriveName:

    @pytest.mark.parametrize("repo_url,expected", [
        ("https://git.example.com/acme/foo-go", "foo-go"),
        ("https://example.com/foo-go.git", "foo-go"),
        ("https://github.com/acme/api.git", "api"),
        ("https://github.com/acme/api/", "api"),
        ("git@github.com:acme/worker.git", "worker"),
        ("git@github.com:solo.git", "solo"),
        ("https://github.com/", "app"),
        ("https://github.com/acme/.git", "app"),
    ])
    def test_derive_name(self, repo_url, expected):
        assert derive_name(repo_url) == expected


class TestGenerateAppId:

    def test_format(self):
        assert re.fullmatch(r"app_\d+_\d{6}_[0-9a-f]{6}", generate_app_id())

    def test_unique(self):
        assert len({generate_app_id() for _ in range(1000)}) == 1000


class TestLifecycle:

    @pytest.mark.parametrize("current,target,allowed", [
        (AppStatus.IDLE, AppStatus.DEPLOYING, True),
        (AppStatus.IDLE, AppStatus.RUNNING, False),
        (AppStatus.DEPLOYING, AppStatus.RUNNING, True),
        (AppStatus.DEPLOYING, AppStatus.ERROR, True),
        (AppStatus.RUNNING, AppStatus.ERROR, True),
        (AppStatus.RUNNING, AppStatus.DEPLOYING, False),
        (AppStatus.ERROR, AppStatus.DEPLOYING, False),
        (AppStatus.ERROR, AppStatus.IDLE, False),
    ])
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_errored_app_does_not_hold_port(self):
        app = Application(id="app_1", name="x", repo_url="https://github.com/acme/x", port=4000)

        assert app.holds_port
        app.status = AppStatus.ERROR
        assert not app.holds_port

    def test_copy_is_detached(self):
        app = Application(id="app_1", name="x", repo_url="https://github.com/acme/x", port=4000)

        clone = app.copy()
        clone.port = 5000

        assert app.port == 4000
