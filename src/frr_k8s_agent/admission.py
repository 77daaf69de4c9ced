"""``AdmissionReview`` handling for ``FRRConfiguration`` resources."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from frr_k8s.exceptions import FRRK8sError
from frr_k8s.interfaces import Inventory, SemanticValidator
from frr_k8s.resources import ConfigFragment
from frr_k8s.selector import SelectorCache
from frr_k8s.validator import ConflictValidator, Operation

from .config import WebhookConfig

LOG = logging.getLogger(__name__)

API_VERSION = "admission.k8s.io/v1"
KIND = "AdmissionReview"

_OPERATIONS = {op.value: op for op in Operation}


class AdmissionHandler:
    """Turn admission reviews into validator calls.

    The handler fails closed: whatever prevents a verdict (an unreachable
    API server, a timeout, a bug in the semantic validator) denies the
    request.
    """

    def __init__(self, validator: ConflictValidator) -> None:
        self._validator = validator

    @property
    def validator(self) -> ConflictValidator:
        return self._validator

    def review(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        request = body.get("request")
        if not isinstance(request, Mapping):
            raise ValueError("AdmissionReview has no request")
        uid = str(request.get("uid", ""))

        operation = _OPERATIONS.get(str(request.get("operation", "")))
        if operation is None:
            return self._response(uid, allowed=True)

        obj = request.get("oldObject") if operation is Operation.DELETE else request.get("object")
        if not isinstance(obj, Mapping):
            if operation is Operation.DELETE:
                return self._response(uid, allowed=True)
            raise ValueError(f"AdmissionReview {uid} has no object")
        metadata = obj.get("metadata")
        if not isinstance(metadata, Mapping):
            metadata = {}
        target = f"{metadata.get('namespace', '')}/{metadata.get('name', '')}"

        try:
            fragment = ConfigFragment.from_dict(obj)
            self._validator.validate(fragment, operation)
        except FRRK8sError as exc:
            LOG.info(
                "denied %s of FRRConfiguration %s: %s", operation.value, target, exc
            )
            return self._response(uid, allowed=False, message=str(exc))
        except Exception as exc:
            LOG.exception("validation of FRRConfiguration %s failed", target)
            return self._response(
                uid, allowed=False, message=f"failed to validate resource: {exc}"
            )
        return self._response(uid, allowed=True)

    @staticmethod
    def _response(uid: str, allowed: bool, message: Optional[str] = None) -> Dict[str, Any]:
        response: Dict[str, Any] = {"uid": uid, "allowed": allowed}
        if not allowed:
            response["status"] = {"code": 403, "message": message or ""}
        return {"apiVersion": API_VERSION, "kind": KIND, "response": response}


def build_handler(
    config: WebhookConfig, inventory: Inventory, semantic_validator: SemanticValidator
) -> AdmissionHandler:
    cache = SelectorCache(maxsize=config.selector_cache_size)
    return AdmissionHandler(ConflictValidator(inventory, semantic_validator, cache))
