import base64
from enum import StrEnum
from typing import Any, Literal

from jsonpointer import JsonPointer, JsonPointerException
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    RootModel,
    field_serializer,
    model_validator,
    field_validator,
)


class ApiVersion(StrEnum):
    V1 = "admission.k8s.io/v1"


class Operation(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


class PatchType(StrEnum):
    JSONPatch = "JSONPatch"


class PatchOp(StrEnum):
    REPLACE = "replace"
    ADD = "add"
    REMOVE = "remove"


class PatchAction(BaseModel):
    """A single JSON Patch operation.

    The path is held as a tuple of unescaped segments and only rendered to a
    JSON pointer (RFC 6901) when the action is serialized.
    """

    op: PatchOp
    path: tuple[str, ...]
    value: Any = None

    @field_validator("path", mode="before")
    @classmethod
    def validate_path(cls, val):
        if isinstance(val, str):
            try:
                val = JsonPointer(val).parts
            except JsonPointerException as err:
                raise ValueError(str(err))
        return val

    @field_serializer("path")
    def serialize_path(self, path: tuple[str, ...]) -> str:
        return JsonPointer.from_parts(path).path


# https://jsonpatch.com/
Patch = RootModel[list[PatchAction]]


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#status-v1-meta
class AdmissionReviewStatus(BaseModel):
    message: str
    code: int | None = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionResponse
class AdmissionResponse(BaseModel):
    allowed: bool
    status: AdmissionReviewStatus | None = None
    uid: str
    patchType: PatchType | None = None
    patch: str | None = None

    @field_validator("patch", mode="before")
    @classmethod
    def validate_patch(cls, val):
        if isinstance(val, Patch):
            val = base64.b64encode(
                val.model_dump_json(exclude_none=True).encode()
            ).decode()
        elif isinstance(val, (str, bytes)):
            # Make sure the base64 string contains valid data.
            Patch.model_validate_json(base64.b64decode(val))
        return val

    @model_validator(mode="after")
    def validate_model(self):
        if self.patch and not self.patchType:
            raise ValueError("missing patchType field")
        if self.patchType and not self.patch:
            raise ValueError(f"patchType is {self.patchType} but there is no patch")

        return self


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#groupversionkind-v1-meta
class GroupVersionKind(BaseModel):
    group: str = ""
    version: str = ""
    kind: str


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionRequest
class AdmissionRequest(BaseModel):
    uid: str
    kind: GroupVersionKind | None = None
    name: str | None = None
    namespace: str | None = None
    operation: Operation = Operation.CREATE
    object: dict[str, Any] | None = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionReview
class AdmissionReview(BaseModel):
    apiVersion: Literal[ApiVersion.V1] = ApiVersion.V1
    kind: Literal["AdmissionReview"] = "AdmissionReview"
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    @model_validator(mode="after")
    def validate_model(self):
        if not (self.request or self.response):
            raise ValueError("must contain a request or a response")

        return self


class TolerationOperator(StrEnum):
    EXISTS = "Exists"
    EQUAL = "Equal"


class TaintEffect(StrEnum):
    NO_SCHEDULE = "NoSchedule"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"
    NO_EXECUTE = "NoExecute"


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#toleration-v1-core
class Toleration(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str | None = None
    operator: TolerationOperator | None = None
    value: str | None = None
    effect: TaintEffect | None = None
    tolerationSeconds: int | None = Field(
        default=None,
        validation_alias=AliasChoices("tolerationSeconds", "duration"),
    )

    @field_validator("operator", "effect", mode="before")
    @classmethod
    def validate_empty(cls, val):
        # The API server treats an empty operator as Equal and an empty
        # effect as "all effects"; neither is a distinct value for us.
        if val == "":
            return None
        return val

    def matches(self, other: "Toleration") -> bool:
        """Whether `other` is the same entry as this toleration.

        Entries are the same when their keys are equal. An unset effect
        stands for every effect, so it only has to agree with the other
        effect when both are set.
        """
        if self.key != other.key:
            return False

        return self.effect is None or other.effect is None or self.effect == other.effect

    def as_patch_value(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class MutationPolicy(BaseModel):
    """The tolerations every eligible workload must carry."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: int = 1
    tolerations: tuple[Toleration, ...] = ()


class Metadata(BaseModel):
    name: str | None = None
    namespace: str | None = None
    labels: dict[str, str] = {}
    annotations: dict[str, str] = {}

    @field_validator("labels", "annotations", mode="before")
    @classmethod
    def validate_maps(cls, val):
        return {} if val is None else val


class PodSpec(BaseModel):
    tolerations: list[Toleration] = []

    @field_validator("tolerations", mode="before")
    @classmethod
    def validate_tolerations(cls, val):
        return [] if val is None else val
