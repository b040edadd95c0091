import pytest

from buildpilot.core.update_hub import ProjectUpdateHub
from buildpilot.models.project import Project


@pytest.mark.asyncio
async def test_publish_reaches_only_project_subscribers() -> None:
    hub = ProjectUpdateHub()
    project = Project(owner_id="u1", name="first")
    other = Project(owner_id="u1", name="other")
    queue = hub.subscribe(project.id)
    other_queue = hub.subscribe(other.id)

    hub.publish(project)

    snapshot = queue.get_nowait()
    assert snapshot["id"] == project.id
    assert snapshot["status"] == "idle"
    assert other_queue.empty()


@pytest.mark.asyncio
async def test_full_queue_drops_oldest_snapshot() -> None:
    hub = ProjectUpdateHub(max_pending=2)
    project = Project(owner_id="u1")
    queue = hub.subscribe(project.id)

    for name in ["one", "two", "three"]:
        project.name = name
        hub.publish(project)

    assert [queue.get_nowait()["name"], queue.get_nowait()["name"]] == ["two", "three"]


def test_unsubscribe_forgets_project() -> None:
    hub = ProjectUpdateHub()
    queue = hub.subscribe("p1")
    assert hub.subscriber_count("p1") == 1

    hub.unsubscribe("p1", queue)

    assert hub.subscriber_count("p1") == 0
    hub.publish(Project(id="p1", owner_id="u1"))
