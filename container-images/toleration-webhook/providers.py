import logging

import pydantic
import yaml

from kubernetes import config, client
from kubernetes.dynamic.exceptions import DynamicApiError
from openshift.dynamic import DynamicClient
from typing import Any, Mapping
from typing_extensions import Protocol, override

from exc import ConfigurationError, ProviderError
from models import MutationPolicy

LOG = logging.getLogger(__name__)


class Provider(Protocol):
    def load_policy(self) -> MutationPolicy: ...


def parse_policy(text: str, source: str) -> MutationPolicy:
    """Parse and validate a YAML policy document read from `source`."""

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as err:
        LOG.error("failed to parse policy from %s: %s", source, err)
        raise ConfigurationError(f"policy in {source} is not valid YAML")

    if not isinstance(data, dict):
        raise ConfigurationError(f"policy in {source} must be a mapping")

    try:
        policy = MutationPolicy.model_validate(data)
    except pydantic.ValidationError as err:
        LOG.error("invalid policy in %s: %s", source, err)
        raise ConfigurationError(f"policy in {source} is invalid: {err}")

    LOG.info(
        "loaded policy %s (version %d) with %d tolerations from %s",
        policy.name,
        policy.version,
        len(policy.tolerations),
        source,
    )
    return policy


class FileProvider(Provider):
    def __init__(self, settings: Mapping[str, Any]):
        self.path = settings.get("POLICY_FILE")
        if not self.path:
            raise ConfigurationError("missing policy file configuration")

    @override
    def load_policy(self):
        try:
            with open(self.path) as fd:
                text = fd.read()
        except OSError as err:
            LOG.error("unable to read policy file %s: %s", self.path, err)
            raise ProviderError(f"unable to read policy file {self.path}")

        return parse_policy(text, self.path)


class ConfigMapProvider(Provider):
    def __init__(self, settings: Mapping[str, Any]):
        """Allocate a Kubernetes dynamic client and ConfigMap API client"""

        super().__init__()

        self.name = settings.get("POLICY_CONFIGMAP")
        self.namespace = settings.get("POLICY_NAMESPACE")
        self.key = settings.get("POLICY_KEY")
        if not (self.name and self.namespace and self.key):
            raise ConfigurationError("missing policy configmap configuration")

        try:
            config.load_config()
        except config.ConfigException as err:
            LOG.warning("unable to configure Kubernetes client: %s", err)
            raise ProviderError("unable to configure Kubernetes client")

        k8s_client = client.ApiClient()
        dyn_client = DynamicClient(k8s_client)

        self._client = dyn_client
        self._configmap_resource = dyn_client.resources.get(
            api_version="v1", kind="ConfigMap"
        )

    @property
    def source(self):
        return f"configmap {self.namespace}/{self.name}"

    @override
    def load_policy(self):
        try:
            configmap = self._configmap_resource.get(
                name=self.name, namespace=self.namespace
            )
        except DynamicApiError as err:
            LOG.error("unable to read %s: %s", self.source, err)
            raise ProviderError(f"unable to read {self.source}")

        data = configmap.data
        text = data[self.key] if data else None
        if text is None:
            raise ConfigurationError(f"{self.source} has no key {self.key}")

        return parse_policy(text, self.source)
