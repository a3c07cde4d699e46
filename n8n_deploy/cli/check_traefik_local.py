#!/usr/bin/env python3
"""
Verify the Traefik configuration of an n8n host.

Runs locally on the EC2 instance and inspects the running containers, the
Let's Encrypt store, DNS, HTTP/HTTPS reachability and Traefik routing. Each
check prints a pass, warning or failure line.

Usage: check-traefik-local [domain-name]

This file is shipped to the instance as a standalone script, so it must only
import the standard library and requests.
"""

import argparse
import json
import logging
import os
import re
import shutil
import socket
import ssl
import subprocess
import sys
from typing import Dict, List, Optional, Sequence

import requests

logger = logging.getLogger("check_traefik_local")

DEFAULT_DOMAIN = "n8n.keysely.com"
DEFAULT_COMPOSE_DIR = "/opt/n8n/docker"
METADATA_BASE_URL = "http://169.254.169.254/latest"
REQUEST_TIMEOUT = 10
METADATA_TIMEOUT = 2
N8N_INTERNAL_URL = "http://n8n:5678"
DOCKER_SOCKET = "/var/run/docker.sock"
SEPARATOR = "-" * 40
BANNER = "=" * 42

PASSED = "passed"
WARNING = "warning"
FAILED = "failed"

REDIRECT_CODES = (301, 302, 308)
HTTPS_SUCCESS_MESSAGES = {
    401: "HTTPS is accessible (401 = Basic Auth required, which is correct)",
    200: "HTTPS is accessible",
}
LISTENING_PORT_PATTERN = re.compile(r":(80|443)\b")
PORT_MAPPING_PATTERN = re.compile(r"traefik|80|443")


class Reporter:
    """Prints check results and keeps a tally per status."""

    SYMBOLS = {
        PASSED: ("\033[0;32m", "✓"),
        FAILED: ("\033[0;31m", "✗"),
        WARNING: ("\033[1;33m", "⚠"),
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        self.color = color
        self.counts: Dict[str, int] = {PASSED: 0, WARNING: 0, FAILED: 0}

    def echo(self, text: str = "") -> None:
        print(text)

    def section(self, number: int, title: str) -> None:
        self.echo(f"{number}. {title}...")
        self.echo(SEPARATOR)

    def _record(self, status: str, message: str) -> None:
        self.counts[status] += 1
        color, symbol = self.SYMBOLS[status]
        if self.color:
            symbol = f"{color}{symbol}{self.RESET}"
        self.echo(f"{symbol} {message}")

    def passed(self, message: str) -> None:
        self._record(PASSED, message)

    def warning(self, message: str) -> None:
        self._record(WARNING, message)

    def failed(self, message: str) -> None:
        self._record(FAILED, message)


def setup_logging(level: str = "WARNING") -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def run_command(
    args: Sequence[str], cwd: Optional[str] = None, timeout: int = 30
) -> Optional[subprocess.CompletedProcess]:
    """Run a command and capture its output.

    Returns None when the executable is missing or the command times out, so
    callers can report the problem instead of crashing.
    """
    logger.debug("Running: %s", " ".join(args))
    try:
        return subprocess.run(  # noqa: S603
            list(args),
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("Command %s could not run: %s", args[0], exc)
        return None


def succeeded(result: Optional[subprocess.CompletedProcess]) -> bool:
    return result is not None and result.returncode == 0


def docker_inspect(name: str) -> Optional[dict]:
    """Return the ``docker inspect`` document for a container, or None."""
    result = run_command(["docker", "inspect", name])
    if not succeeded(result):
        return None
    try:
        documents = json.loads(result.stdout)
    except json.JSONDecodeError:
        logger.debug("docker inspect %s returned invalid JSON", name)
        return None
    return documents[0] if documents else None


def traefik_labels(container: Optional[dict]) -> Dict[str, str]:
    labels = ((container or {}).get("Config") or {}).get("Labels") or {}
    return {key: value for key, value in labels.items() if key.startswith("traefik.")}


def container_networks(container: Optional[dict]) -> List[str]:
    networks = ((container or {}).get("NetworkSettings") or {}).get("Networks") or {}
    return list(networks)


def compose_ps_command() -> List[str]:
    if shutil.which("docker-compose"):
        return ["docker-compose", "ps"]
    return ["docker", "compose", "ps"]


def acme_file_size() -> int:
    result = run_command(
        ["docker", "exec", "traefik", "stat", "-c%s", "/letsencrypt/acme.json"]
    )
    if not succeeded(result):
        return 0
    try:
        return int(result.stdout.strip())
    except ValueError:
        return 0


def resolve_domain(domain: str) -> Optional[str]:
    """Resolve ``domain`` to an IPv4 address, returning the last record like ``dig | tail -n1``."""
    try:
        _, _, addresses = socket.gethostbyname_ex(domain)
    except (OSError, UnicodeError):
        return None
    return addresses[-1] if addresses else None


def get_instance_public_ip(timeout: float = METADATA_TIMEOUT) -> Optional[str]:
    """Read the instance public IPv4 from IMDS, preferring an IMDSv2 token."""
    headers = {}
    try:
        token = requests.put(
            f"{METADATA_BASE_URL}/api/token",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": "60"},
            timeout=timeout,
        )
        if token.status_code == 200:
            headers["X-aws-ec2-metadata-token"] = token.text
    except requests.RequestException as exc:
        logger.debug("IMDSv2 token request failed: %s", exc)

    try:
        response = requests.get(
            f"{METADATA_BASE_URL}/meta-data/public-ipv4",
            headers=headers,
            timeout=timeout,
        )
    except requests.RequestException as exc:
        logger.debug("Instance metadata unavailable: %s", exc)
        return None

    if response.status_code != 200:
        return None
    return response.text.strip() or None


def fetch_certificate(domain: str, port: int = 443, timeout: float = 5) -> dict:
    """Fetch and verify the certificate served for ``domain``."""
    context = ssl.create_default_context()
    with socket.create_connection((domain, port), timeout=timeout) as sock:
        with context.wrap_socket(sock, server_hostname=domain) as tls:
            return tls.getpeercert()


def format_distinguished_name(name) -> str:
    return ", ".join(f"{key}={value}" for rdn in name or () for key, value in rdn)


def check_containers(reporter: Reporter, compose_dir: str) -> bool:
    reporter.section(1, "Checking Docker containers status")
    if not os.path.isdir(compose_dir) or not os.access(compose_dir, os.R_OK | os.X_OK):
        reporter.failed(f"Cannot access {compose_dir}")
        return False

    reporter.echo("Container Status:")
    result = run_command(compose_ps_command(), cwd=compose_dir)
    if succeeded(result):
        reporter.echo(result.stdout.rstrip())
    else:
        reporter.warning("Cannot list Docker Compose services")

    reporter.echo()
    reporter.echo("Container Health:")
    result = run_command(
        ["docker", "ps", "--format", "table {{.Names}}\t{{.Status}}\t{{.Ports}}"]
    )
    if succeeded(result):
        reporter.echo(result.stdout.rstrip())
    else:
        reporter.failed("Cannot query the Docker daemon")
    reporter.echo()
    return True


def check_proxy_logs(reporter: Reporter) -> None:
    reporter.section(2, "Checking Traefik logs")
    reporter.echo("Last 50 lines of Traefik logs:")
    result = run_command(["docker", "logs", "traefik", "--tail", "50"])
    if succeeded(result):
        # docker logs replays the container's stderr on stderr
        reporter.echo((result.stdout + result.stderr).rstrip())
    else:
        reporter.failed("Cannot access Traefik logs")
    reporter.echo()


def check_proxy_configuration(reporter: Reporter) -> None:
    reporter.section(3, "Checking Traefik configuration")
    reporter.echo("Traefik container environment variables:")
    traefik = docker_inspect("traefik")
    if traefik is None:
        reporter.failed("Cannot inspect Traefik container")
    else:
        for entry in (traefik.get("Config") or {}).get("Env") or []:
            reporter.echo(f"  {entry}")

    reporter.echo()
    reporter.echo("Traefik labels on n8n service:")
    labels = traefik_labels(docker_inspect("n8n"))
    if labels:
        for key in sorted(labels):
            reporter.echo(f"  {key}={labels[key]}")
    else:
        reporter.warning("No Traefik labels found")
    reporter.echo()


def check_certificates(reporter: Reporter) -> None:
    reporter.section(4, "Checking Let's Encrypt certificates")
    reporter.echo("Checking acme.json file:")
    listing = run_command(["docker", "exec", "traefik", "ls", "-la", "/letsencrypt/"])
    if not succeeded(listing):
        reporter.failed("Cannot access /letsencrypt directory")
        reporter.echo()
        return

    reporter.echo(listing.stdout.rstrip())
    size = acme_file_size()
    if size > 0:
        reporter.passed(f"acme.json exists and has content ({size} bytes)")
    else:
        reporter.warning(
            "acme.json exists but is empty (certificate may still be provisioning)"
        )
    reporter.echo()


def check_dns(reporter: Reporter, domain: str) -> None:
    reporter.section(5, "Checking DNS resolution")
    dns_ip = resolve_domain(domain)
    if dns_ip is None:
        reporter.failed(f"DNS does not resolve for {domain}")
        reporter.echo(f"  Manual check: dig {domain} or nslookup {domain}")
        reporter.echo()
        return

    reporter.passed(f"DNS resolves {domain} to {dns_ip}")
    instance_ip = get_instance_public_ip()
    if instance_ip and instance_ip == dns_ip:
        reporter.passed("DNS IP matches instance public IP")
    elif instance_ip:
        reporter.warning(
            f"DNS IP ({dns_ip}) does not match instance IP ({instance_ip})"
        )
    reporter.echo()


def check_http(reporter: Reporter, domain: str) -> None:
    reporter.section(6, "Checking HTTP connectivity")
    try:
        response = requests.get(
            f"http://{domain}", allow_redirects=False, timeout=REQUEST_TIMEOUT
        )
    except requests.RequestException:
        reporter.failed(f"Cannot connect to http://{domain}")
        reporter.echo()
        return

    code = response.status_code
    if code in REDIRECT_CODES:
        reporter.passed(f"HTTP redirects to HTTPS (code: {code})")
    else:
        reporter.warning(
            f"HTTP returned code {code} (expected 301/302/308 redirect)"
        )
    reporter.echo()


def check_https(reporter: Reporter, domain: str) -> None:
    reporter.section(7, "Checking HTTPS connectivity and SSL certificate")
    reporter.echo("Testing SSL certificate:")
    try:
        certificate = fetch_certificate(domain)
    except ssl.SSLCertVerificationError as exc:
        reporter.warning(
            f"SSL certificate failed verification ({exc.verify_message}); "
            "it may still be provisioning"
        )
    except OSError:
        reporter.warning("Cannot retrieve SSL certificate (may still be provisioning)")
    else:
        reporter.passed("SSL certificate is valid")
        reporter.echo(f"  notBefore={certificate.get('notBefore')}")
        reporter.echo(f"  notAfter={certificate.get('notAfter')}")
        reporter.echo(f"  subject={format_distinguished_name(certificate.get('subject'))}")
        reporter.echo(f"  issuer={format_distinguished_name(certificate.get('issuer'))}")

    try:
        response = requests.get(
            f"https://{domain}", allow_redirects=False, timeout=REQUEST_TIMEOUT
        )
    except requests.RequestException:
        reporter.failed(f"Cannot connect to https://{domain}")
        reporter.echo()
        return

    code = response.status_code
    if code in HTTPS_SUCCESS_MESSAGES:
        reporter.passed(HTTPS_SUCCESS_MESSAGES[code])
    else:
        reporter.warning(f"HTTPS returned code {code}")
    reporter.echo()


def check_routing(reporter: Reporter) -> None:
    reporter.section(8, "Checking Traefik routing configuration")
    reporter.echo("Checking if n8n service is discoverable by Traefik:")
    n8n_networks = set(container_networks(docker_inspect("n8n")))
    shared = sorted(n8n_networks & set(container_networks(docker_inspect("traefik"))))
    if shared:
        reporter.passed(f"n8n is in the Docker network {shared[0]} shared with Traefik")
    elif n8n_networks:
        reporter.warning("n8n and Traefik do not share a Docker network")
    else:
        reporter.warning("Cannot verify n8n network configuration")

    reporter.echo()
    reporter.echo("Testing internal connectivity from Traefik to n8n:")
    healthz = run_command(
        ["docker", "exec", "traefik", "wget", "-qO-", f"{N8N_INTERNAL_URL}/healthz"]
    )
    if succeeded(healthz):
        reporter.passed("n8n is reachable from Traefik container")
    else:
        root = run_command(
            ["docker", "exec", "traefik", "wget", "-qO-", f"{N8N_INTERNAL_URL}/"]
        )
        if succeeded(root) and "n8n" in root.stdout:
            reporter.passed("n8n is reachable from Traefik (alternative check)")
        else:
            reporter.warning("n8n may not be reachable from Traefik (check logs)")
    reporter.echo()


def check_ports(reporter: Reporter) -> None:
    reporter.section(9, "Checking port bindings")
    reporter.echo("Ports listening on the host:")
    command = ["ss", "-tlnp"] if shutil.which("ss") else ["netstat", "-tlnp"]
    result = run_command(command)
    output = result.stdout if succeeded(result) else ""
    listening = [line for line in output.splitlines() if LISTENING_PORT_PATTERN.search(line)]
    if listening:
        for line in listening:
            reporter.echo(line)
    else:
        reporter.warning(f"Ports 80/443 not found in {command[0]} output")

    reporter.echo()
    reporter.echo("Docker port mappings:")
    result = run_command(["docker", "ps", "--format", "table {{.Names}}\t{{.Ports}}"])
    if succeeded(result):
        for line in result.stdout.splitlines():
            if PORT_MAPPING_PATTERN.search(line):
                reporter.echo(line)
    reporter.echo()


def check_docker_socket(reporter: Reporter) -> None:
    reporter.section(10, "Checking Traefik service discovery")
    mounts = (docker_inspect("traefik") or {}).get("Mounts") or []
    if any(mount.get("Destination") == DOCKER_SOCKET for mount in mounts):
        reporter.passed("Traefik has access to Docker socket")
    else:
        reporter.warning("Cannot verify Docker socket access")
    reporter.echo()


def print_summary(reporter: Reporter) -> None:
    reporter.section(11, "Summary and recommendations")
    reporter.echo()
    reporter.echo(
        f"Results: {reporter.counts[PASSED]} passed, "
        f"{reporter.counts[WARNING]} warnings, {reporter.counts[FAILED]} failed"
    )
    reporter.echo()
    for line in (
        "Expected Traefik configuration:",
        "  ✓ Traefik container running on ports 80 and 443",
        "  ✓ Let's Encrypt certificate resolver configured",
        "  ✓ HTTP to HTTPS redirect enabled",
        "  ✓ n8n service with Traefik labels",
        "  ✓ DNS pointing to instance IP",
        "  ✓ SSL certificate valid and working",
        "",
        "If any checks failed:",
        "  1. Check Traefik logs: docker logs traefik",
        "  2. Check n8n logs: docker logs n8n",
        "  3. Verify DNS is configured correctly",
        "  4. Ensure security groups allow ports 80 and 443",
        "  5. Check that Let's Encrypt can reach port 80 (for HTTP challenge)",
        "  6. Wait a few minutes for certificate provisioning (first time)",
        "  7. Restart services if needed: cd /opt/n8n/docker && docker-compose restart",
    ):
        reporter.echo(line)
    reporter.echo()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="check-traefik-local",
        description="Verify Traefik, certificate and routing setup on the n8n host",
    )
    parser.add_argument(
        "domain", nargs="?", default=DEFAULT_DOMAIN, help="Domain served by n8n"
    )
    parser.add_argument(
        "--compose-dir",
        default=DEFAULT_COMPOSE_DIR,
        help="Directory holding docker-compose.yml",
    )
    parser.add_argument(
        "--no-color", action="store_true", help="Disable colored status symbols"
    )
    parser.add_argument(
        "--strict", action="store_true", help="Exit with status 1 when a check fails"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level for diagnostic internals",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run every check and return the process exit status."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    reporter = Reporter(color=not args.no_color and "NO_COLOR" not in os.environ)
    reporter.echo(BANNER)
    reporter.echo("Traefik Configuration Check")
    reporter.echo(BANNER)
    reporter.echo(f"Domain: {args.domain}")
    reporter.echo()

    if not check_containers(reporter, args.compose_dir):
        return 1

    check_proxy_logs(reporter)
    check_proxy_configuration(reporter)
    check_certificates(reporter)
    check_dns(reporter, args.domain)
    check_http(reporter, args.domain)
    check_https(reporter, args.domain)
    check_routing(reporter)
    check_ports(reporter)
    check_docker_socket(reporter)
    print_summary(reporter)

    if args.strict and reporter.counts[FAILED]:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
