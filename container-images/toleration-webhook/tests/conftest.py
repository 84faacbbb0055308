import pytest

import mutate

from models import MutationPolicy, Toleration


PREFIX = "webhook.test"

NOT_READY = Toleration(
    key="node.kubernetes.io/not-ready",
    operator="Exists",
    effect="NoExecute",
    duration=15,
)
UNREACHABLE = Toleration(
    key="node.kubernetes.io/unreachable",
    operator="Exists",
    effect="NoExecute",
    duration=15,
)

POLICY = MutationPolicy(name="node-health", version=2, tolerations=[NOT_READY, UNREACHABLE])


class FakeProvider:
    def __init__(self, settings):
        self.settings = settings

    def load_policy(self):
        return POLICY


@pytest.fixture()
def policy():
    return POLICY


@pytest.fixture()
def app():
    app = mutate.create_app(
        PROVIDER=FakeProvider,
        TESTING=True,
        EXCLUDED_NAMESPACES="kube-system,kube-public",
        ANNOTATION_PREFIX=PREFIX,
    )
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def excluded_namespaces():
    return ("kube-system", "kube-public")
