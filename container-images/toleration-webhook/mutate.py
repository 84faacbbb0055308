import functools
import logging

import jsonpatch
import jsonpointer
import pydantic

from flask import Flask, abort, request, jsonify, current_app

from models import (
    BaseModel,
    AdmissionReview,
    AdmissionResponse,
    AdmissionReviewStatus,
    Metadata,
    Operation,
    Patch,
    PatchType,
    PodSpec,
)

from eligibility import DEFAULT_ANNOTATION_PREFIX, INJECTED, annotation_key, evaluate
from patches import annotate, synthesize
from providers import ConfigMapProvider, FileProvider
from exc import ApplicationError, ConfigurationError, MalformedRequestError

LOG = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


class DEFAULTS:
    PROVIDER = FileProvider
    POLICY_FILE = "/etc/webhook/policy.yaml"
    POLICY_KEY = "policy.yaml"
    EXCLUDED_NAMESPACES = "kube-system,kube-public"
    ANNOTATION_PREFIX = DEFAULT_ANNOTATION_PREFIX
    ANNOTATE_STATUS = True


# Names accepted for TOLERATIONS_PROVIDER in the environment.
PROVIDERS = {
    "file": FileProvider,
    "configmap": ConfigMapProvider,
}

# Where the tolerations list lives for each kind we know how to mutate.
TOLERATION_PATHS = {
    "Pod": ("spec", "tolerations"),
    "Deployment": ("spec", "template", "spec", "tolerations"),
    "StatefulSet": ("spec", "template", "spec", "tolerations"),
    "DaemonSet": ("spec", "template", "spec", "tolerations"),
    "ReplicaSet": ("spec", "template", "spec", "tolerations"),
    "Job": ("spec", "template", "spec", "tolerations"),
    "CronJob": ("spec", "jobTemplate", "spec", "template", "spec", "tolerations"),
}

MUTATING_OPERATIONS = {Operation.CREATE, Operation.UPDATE}


def jsonresponse():
    """Transforms the response from a view function into a JSON object."""

    def _outer(func):
        @functools.wraps(func)
        def _inner(*args, **kwargs):
            res = func(*args, **kwargs)
            if isinstance(res, BaseModel):
                return jsonify(res.model_dump(mode="json", exclude_none=True))
            else:
                return jsonify(res)

        return _inner

    return _outer


def admission_response(uid, allowed=True, message=None, code=None, patch=None):
    status = AdmissionReviewStatus(message=message, code=code) if message else None
    return AdmissionReview(
        response=AdmissionResponse(
            uid=uid,
            allowed=allowed,
            status=status,
            patchType=PatchType.JSONPatch if patch is not None else None,
            patch=patch,
        )
    )


def parse_target(uid, kind, obj, base_path):
    """Extract the metadata and current tolerations of the object under review."""

    # The status annotation is added below /metadata, so it has to exist.
    if not isinstance(obj.get("metadata"), dict):
        raise MalformedRequestError(uid, f"{kind} has no metadata")

    pointer = jsonpointer.JsonPointer.from_parts(base_path[:-1])
    pod_spec = pointer.resolve(obj, None)
    if not isinstance(pod_spec, dict):
        raise MalformedRequestError(uid, f"{kind} has no pod spec at {pointer.path}")

    try:
        metadata = Metadata.model_validate(obj["metadata"])
        spec = PodSpec.model_validate(pod_spec)
    except pydantic.ValidationError as err:
        raise MalformedRequestError(uid, f"malformed {kind}: {err}")

    return metadata, spec.tolerations


def verify_patch(obj, patch):
    """Make sure the patch applies to the object before handing it out."""

    try:
        jsonpatch.apply_patch(
            obj, patch.model_dump(mode="json", exclude_none=True), in_place=False
        )
    except (jsonpatch.JsonPatchException, jsonpointer.JsonPointerException) as err:
        LOG.error("computed patch does not apply: %s", err)
        raise ApplicationError("computed patch does not apply to the object")


@jsonresponse()
def mutate_workload():
    body = AdmissionReview.model_validate(request.get_json())
    if body.request is None:
        abort(400, description="admission review contains no request")

    req = body.request

    if req.operation not in MUTATING_OPERATIONS:
        return admission_response(
            req.uid, message=f"No mutation for {req.operation} requests"
        )

    if req.object is None:
        raise MalformedRequestError(req.uid, "request contains no object")

    kind = req.kind.kind if req.kind else req.object.get("kind")
    base_path = TOLERATION_PATHS.get(kind)
    if base_path is None:
        return admission_response(req.uid, message=f"Kind {kind} is not handled")

    metadata, tolerations = parse_target(req.uid, kind, req.object, base_path)
    namespace = req.namespace or metadata.namespace or ""
    name = req.name or metadata.name or "<unnamed>"
    prefix = current_app.config["ANNOTATION_PREFIX"]

    if not evaluate(
        namespace, metadata.annotations, current_app.excluded_namespaces, prefix
    ):
        LOG.info("Skipping mutation of %s %s/%s", kind, namespace, name)
        return admission_response(req.uid, message="Mutation not required")

    actions = synthesize(tolerations, current_app.policy.tolerations, base_path)

    # If every toleration is already present, return without modifications
    if not actions:
        return admission_response(req.uid, message="Tolerations already present")

    if current_app.config["ANNOTATE_STATUS"]:
        actions.append(
            annotate(metadata.annotations, annotation_key("status", prefix), INJECTED)
        )

    patch = Patch(actions)
    verify_patch(req.object, patch)

    LOG.info(
        "Adding %d patch operations to %s %s/%s from policy %s",
        len(actions),
        kind,
        namespace,
        name,
        current_app.policy.name,
    )
    return admission_response(req.uid, patch=patch)


def handle_validationerror(err):
    return str(err), 400, {"content-type": "text/plain"}


def handle_malformedrequesterror(err):
    LOG.warning("denying request %s: %s", err.uid, err.message)
    res = admission_response(err.uid, allowed=False, message=err.message, code=400)
    return jsonify(res.model_dump(mode="json", exclude_none=True))


def handle_applicationerror(err):
    return str(err), 500, {"content-type": "text/plain"}


def health():
    return "OK", 200, {"content-type": "text/plain"}


def resolve_provider(provider):
    if isinstance(provider, str):
        try:
            return PROVIDERS[provider.lower()]
        except KeyError:
            raise ConfigurationError(f"unknown policy provider {provider}")

    return provider


def parse_namespaces(val):
    if isinstance(val, str):
        val = val.split(",")

    if not isinstance(val, (list, tuple)):
        raise ConfigurationError("excluded namespaces must be a list or a string")

    return tuple(ns.strip() for ns in val if ns.strip())


def create_app(**config) -> Flask:
    """Use an application factory [1] to create the Flask app.

    The mutation policy and the namespace exclusion list are loaded here, once,
    and attached to the app. Both are immutable for the lifetime of the app.

    [1]: https://flask.palletsprojects.com/en/3.0.x/patterns/appfactories/
    """

    app = Flask(__name__)
    app.config.from_object(DEFAULTS)
    app.config.from_prefixed_env("TOLERATIONS")
    if config:
        app.config.update(config)

    try:
        app.excluded_namespaces = parse_namespaces(app.config["EXCLUDED_NAMESPACES"])
        provider = resolve_provider(app.config["PROVIDER"])(app.config)
        app.policy = provider.load_policy()
    except ConfigurationError as err:
        LOG.error("Invalid configuration: %s", err)
        raise

    if not app.policy.tolerations:
        LOG.warning("Policy %s has no tolerations; nothing to enforce", app.policy.name)

    app.errorhandler(pydantic.ValidationError)(handle_validationerror)
    app.errorhandler(MalformedRequestError)(handle_malformedrequesterror)
    app.errorhandler(ApplicationError)(handle_applicationerror)
    app.add_url_rule("/healthz", view_func=health)
    app.add_url_rule("/mutate", view_func=mutate_workload, methods=["POST"])

    return app
