"""
Hosting metadata: EC2 instance id, ECS task metadata, EKS pod env
"""
import asyncio
import html
import os
from typing import Any, Dict

import requests
import structlog
from fastapi import APIRouter
from fastapi.responses import HTMLResponse

from biggie.responses import now_iso, response_json

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/metadata", tags=["metadata"])

IMDS = "http://169.254.169.254/latest"
ECS_METADATA_URL = "http://169.254.170.2/v2/metadata"
EKS_KEYS = ("POD_NAME", "POD_NAMESPACE", "POD_IP", "NODE_NAME", "REPLICA_SET")
METADATA_TIMEOUT = 2


def ec2_metadata() -> Dict[str, str]:
    """instance id via IMDSv2 (token) and IMDSv1; absent keys mean that path failed"""
    metadata = {}
    try:
        token = requests.put(
            f"{IMDS}/api/token",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": "21600"},
            timeout=METADATA_TIMEOUT,
        )
        if token.ok:
            resp = requests.get(
                f"{IMDS}/meta-data/instance-id",
                headers={"X-aws-ec2-metadata-token": token.text},
                timeout=METADATA_TIMEOUT,
            )
            if resp.ok:
                metadata["instance_id_v2"] = resp.text
    except requests.RequestException as exc:
        logger.debug("imdsv2 unavailable", error=str(exc))

    try:
        resp = requests.get(f"{IMDS}/meta-data/instance-id", timeout=METADATA_TIMEOUT)
        if resp.ok:
            metadata["instance_id_v1"] = resp.text
    except requests.RequestException as exc:
        logger.debug("imdsv1 unavailable", error=str(exc))
    return metadata


def ecs_metadata() -> Dict[str, Any]:
    resp = requests.get(ECS_METADATA_URL, timeout=METADATA_TIMEOUT)
    resp.raise_for_status()
    return resp.json()


def eks_metadata() -> Dict[str, str]:
    return {key: os.environ[key] for key in EKS_KEYS if os.environ.get(key)}


def ecs_revision(meta: Dict[str, Any]) -> str:
    revision = meta.get("Revision")
    if revision:
        return str(revision)
    # task definition ARN ends in family:revision
    arn = meta.get("TaskDefinitionArn") or ""
    _, sep, tail = arn.rpartition(":")
    return tail if sep and tail.isdigit() else ""


def eks_revision(meta: Dict[str, str]) -> str:
    if meta.get("REPLICA_SET"):
        return meta["REPLICA_SET"]
    pod = meta.get("POD_NAME", "")
    parts = pod.split("-")
    return parts[-1] if len(parts) > 1 else ""


def revision_color(revision: str) -> str:
    """Stable colour for a revision string: sum of code points mod 0xFFFFFF"""
    if not revision:
        return "#000000"
    return "#%06X" % (sum(ord(ch) for ch in revision) % 0xFFFFFF)


def _try_ecs():
    """(metadata, None) or (None, error text)"""
    try:
        return ecs_metadata(), None
    except (requests.RequestException, ValueError) as exc:
        return None, f"error: {exc}"


@router.get("/all")
async def metadata_all():
    ec2, (ecs, ecs_error) = await asyncio.gather(asyncio.to_thread(ec2_metadata), asyncio.to_thread(_try_ecs))
    eks = eks_metadata()
    return response_json({
        "ec2": ec2,
        "ecs": ecs if ecs is not None else ecs_error,
        "eks": eks or "not available",
    })


@router.get("/revision_color", response_class=HTMLResponse)
async def metadata_revision_color():
    ecs, _ = await asyncio.to_thread(_try_ecs)
    parts = [r for r in (ecs_revision(ecs) if ecs else "", eks_revision(eks_metadata())) if r]
    revision = "-".join(parts)
    message = f"Revision: {revision}" if revision else "ECS or EKS metadata unavailable"

    page = f"""
<html>
<head><title>Revision Color</title></head>
<body style="background-color:{revision_color(revision)};">
    <h1>Revision Color</h1>
    <p>{html.escape(message)}</p>
    <p>requested_at: {now_iso()}</p>
</body>
</html>
"""
    return HTMLResponse(page)
