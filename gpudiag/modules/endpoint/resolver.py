"""
Target to address resolution.

Every resolver returns "" when the target lacks the fields it needs, so
callers can try another strategy instead of handling an exception.
"""

from gpudiag.modules.cluster import Target

CLUSTER_DOMAIN = "svc.cluster.local"


def join_host_port(host: str, port: int) -> str:
    """Join host and port, bracketing IPv6 literals."""
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def resolve_direct(target: Target, port: int) -> str:
    """Pod IP address, e.g. "10.0.0.7:8080" or "[fd00::1]:8080"."""
    if not target.pod_ip:
        return ""
    return join_host_port(target.pod_ip, port)


def resolve_dns(target: Target, port: int) -> str:
    """Stable per-pod DNS name behind the headless service."""
    if not (target.pod_name and target.service_name and target.namespace):
        return ""
    return (
        f"{target.pod_name}.{target.service_name}.{target.namespace}."
        f"{CLUSTER_DOMAIN}:{port}"
    )


def resolve_exec(target: Target) -> str:
    """namespace/pod locator for the exec channel."""
    if not (target.namespace and target.pod_name):
        return ""
    return f"{target.namespace}/{target.pod_name}"
