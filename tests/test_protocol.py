import pytest

from walkin_queue.topics import (
    counter_requests,
    counter_responses,
    counter_topic,
    mqtt_topic,
    queue_requests,
    queue_responses,
    service_topic,
    status_updates,
    user_topic,
)


def test_topic_helpers():
    ns = "demo/v1"
    assert queue_requests(ns) == "demo/v1/queue/requests"
    assert queue_responses("c1", ns) == "demo/v1/queue/responses/c1"
    assert counter_requests(ns) == "demo/v1/counters/requests"
    assert counter_responses("C1", ns) == "demo/v1/counters/responses/C1"
    assert status_updates(ns) == "demo/v1/status/updates"


def test_broadcast_topics_map_under_namespace():
    assert service_topic("7") == "service:7"
    assert mqtt_topic(service_topic("7"), "demo/v1") == "demo/v1/service/7"
    assert mqtt_topic(counter_topic("C1"), "demo/v1") == "demo/v1/counter/C1"
    assert mqtt_topic(user_topic("u9"), "demo/v1") == "demo/v1/user/u9"


@pytest.mark.parametrize("bad", ["service", "room:1", "user:", "queue/requests"])
def test_mqtt_topic_rejects_unknown_scopes(bad):
    with pytest.raises(ValueError):
        mqtt_topic(bad)
