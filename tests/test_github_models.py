import json
import os

import pytest

from env_relay.exceptions import MalformedPayloadError
from env_relay.github.models import (
    Commit,
    DispatchReport,
    FileOutcome,
    PushEvent,
    Repository,
    Stage,
)


def load_sample_data(filename):
    with open(os.path.join(os.path.dirname(__file__), "samples", filename)) as f:
        return json.load(f)


def test_push_event_model():
    data = load_sample_data("push.json")
    event = PushEvent.parse(data)

    assert isinstance(event.repository, Repository)
    assert event.repository.full_name == "test-org/env-files"
    assert event.ref == "refs/heads/main"
    assert event.after == "0d1a26e67d8f5eaf1f6ba5c57fc3c7d91ac0fd1c"
    assert len(event.commits) == 2
    assert isinstance(event.commits[0], Commit)


def test_changed_files_keep_order_and_duplicates():
    event = PushEvent.parse(load_sample_data("push.json"))

    assert event.changed_files() == [
        "api_config.env",
        "frontend_app.env",
        "api_config.env",
    ]


def test_changed_files_with_added():
    event = PushEvent.parse(load_sample_data("push.json"))

    assert event.changed_files(include_added=True) == [
        "frontend_new.env",
        "api_config.env",
        "frontend_app.env",
        "api_config.env",
    ]


def test_push_without_commits():
    event = PushEvent.parse(load_sample_data("push_no_commits.json"))

    assert event.commits == []
    assert event.changed_files() == []


@pytest.mark.parametrize(
    "data",
    [
        {"commits": []},
        {"repository": {}, "commits": []},
        {"repository": {"full_name": "test-org/env-files"}},
        {"repository": {"full_name": "test-org/env-files"}, "commits": "nope"},
        {"repository": {"full_name": "test-org/env-files"}, "commits": [{}]},
        {"repository": {"full_name": "env-files"}, "commits": []},
        {"repository": {"full_name": "test-org/env-files"}, "commits": [{"modified": [1]}]},
        [],
        "push",
    ],
)
def test_malformed_push(data):
    with pytest.raises(MalformedPayloadError):
        PushEvent.parse(data)


def test_dispatch_report_failed():
    ok = FileOutcome(path="a.env", name="a.env", project="p")
    bad = FileOutcome(
        path="b.env", name="b.env", project="p", failed_stage=Stage.fetch, error="404"
    )
    report = DispatchReport(repository="o/r", ref="main", outcomes=[ok, bad])

    assert ok.ok and not ok.triggered
    assert not bad.ok
    assert report.failed == [bad]
