"""First-boot provisioning script for the n8n host.

Renders the shell routine executed once by cloud-init: installs Docker and
Docker Compose, writes the compose definition and a credentials file, starts
the n8n/PostgreSQL/Traefik services and installs the on-host diagnostics.
"""

import shlex
from dataclasses import dataclass

from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_s3_assets as s3_assets

from .constants import (
    ACME_WAIT_SECONDS,
    BASE_DIR,
    COMPOSE_BINARY,
    COMPOSE_RELEASE_URL,
    COMPOSE_TEMPLATE,
    DIAGNOSTIC_SCRIPT_LINK,
    DIAGNOSTIC_SCRIPT_NAME,
    DOMAIN_PLACEHOLDER,
    LOGROTATE_POLICY,
    N8N_IMAGE,
    N8N_PORT,
    POSTGRES_IMAGE,
    SERVICE_USER,
    STARTUP_WAIT_SECONDS,
    SYSTEM_PACKAGES,
    TRAEFIK_IMAGE,
)


def heredoc(path: str, body: str, marker: str, expand: bool = False) -> list[str]:
    """Build the lines of a ``cat > path << MARKER`` block.

    Args:
        path: Destination file on the host.
        body: File content, written verbatim when ``expand`` is False.
        marker: Heredoc terminator; must not appear alone on a line in ``body``.
        expand: Allow shell expansion of ``$VAR`` references inside ``body``.

    Returns:
        Command lines ready for ``UserData.add_commands``.

    Raises:
        ValueError: If ``marker`` occurs as a line of ``body``.
    """
    if marker in body.splitlines():
        raise ValueError(f"Heredoc marker {marker!r} appears in body")
    opener = marker if expand else f"'{marker}'"
    return [f"cat > {path} << {opener}", *body.splitlines(), marker]


def escape_expanding(value: str) -> str:
    """Escape ``value`` for literal use inside an unquoted heredoc."""
    for char in ("\\", "$", "`"):
        value = value.replace(char, f"\\{char}")
    return value


@dataclass(frozen=True)
class BootProvisioner:
    """Builder for the n8n host user data.

    Attributes:
        domain_name: Public host name substituted into the compose definition.
        acme_email: Let's Encrypt registration email written to the env file.
        service_user: Unprivileged account owning the deployment directory.
        base_dir: Root directory for compose files, data and scripts.
    """

    domain_name: str
    acme_email: str
    service_user: str = SERVICE_USER
    base_dir: str = BASE_DIR

    @property
    def compose_dir(self) -> str:
        return f"{self.base_dir}/docker"

    @property
    def compose_file(self) -> str:
        return f"{self.compose_dir}/docker-compose.yml"

    @property
    def env_file(self) -> str:
        return f"{self.compose_dir}/.env"

    @property
    def scripts_dir(self) -> str:
        return f"{self.base_dir}/scripts"

    @property
    def diagnostic_script_path(self) -> str:
        return f"{self.scripts_dir}/{DIAGNOSTIC_SCRIPT_NAME}"

    def render_compose_file(self) -> str:
        """Render docker-compose.yml with images, port and domain filled in."""
        rendered = COMPOSE_TEMPLATE
        for token, value in (
            ("{postgres_image}", POSTGRES_IMAGE),
            ("{n8n_image}", N8N_IMAGE),
            ("{traefik_image}", TRAEFIK_IMAGE),
            ("{n8n_port}", str(N8N_PORT)),
            (DOMAIN_PLACEHOLDER, self.domain_name),
        ):
            rendered = rendered.replace(token, value)
        return rendered

    def render_env_file_commands(self) -> list[str]:
        """Commands writing the compose ``.env`` file with generated credentials.

        Static values are escaped so only the generated passwords expand. The
        file is only created when absent so a re-run does not rotate the
        database password away from the one stored in the postgres volume.
        """
        env_body = "\n".join(
            [
                f"DOMAIN_NAME={escape_expanding(self.domain_name)}",
                "POSTGRES_USER=n8n",
                "POSTGRES_PASSWORD=${POSTGRES_PASSWORD}",
                "POSTGRES_DB=n8n",
                "N8N_BASIC_AUTH_USER=admin",
                "N8N_BASIC_AUTH_PASSWORD=${N8N_BASIC_AUTH_PASSWORD}",
                f"ACME_EMAIL={escape_expanding(self.acme_email)}",
            ]
        )
        return [
            f"if [ ! -f {self.env_file} ]; then",
            'POSTGRES_PASSWORD="$(openssl rand -hex 32)"',
            'N8N_BASIC_AUTH_PASSWORD="$(openssl rand -hex 32)"',
            *heredoc(self.env_file, env_body, "ENV_EOF", expand=True),
            "fi",
            f"chown {self.service_user}:{self.service_user} {self.env_file}",
            f"chmod 600 {self.env_file}",
        ]

    def render_logrotate_policy(self) -> str:
        return LOGROTATE_POLICY

    def _system_commands(self) -> list[str]:
        return [
            "yum update -y",
            f"yum install -y {' '.join(SYSTEM_PACKAGES)}",
            "systemctl start docker",
            "systemctl enable docker",
            f"usermod -aG docker {self.service_user}",
            f'curl -fsSL "{COMPOSE_RELEASE_URL}" -o {COMPOSE_BINARY}',
            f"chmod +x {COMPOSE_BINARY}",
        ]

    def _directory_commands(self) -> list[str]:
        directories = [
            self.base_dir,
            self.compose_dir,
            f"{self.compose_dir}/local-files",
            f"{self.base_dir}/data",
            f"{self.base_dir}/postgres-data",
            f"{self.base_dir}/traefik-data",
            self.scripts_dir,
        ]
        return [
            f"mkdir -p {' '.join(directories)}",
            f"chown -R {self.service_user}:{self.service_user} {self.base_dir}",
        ]

    def _start_commands(self) -> list[str]:
        return [
            f"cd {self.compose_dir}",
            f"sudo -u {self.service_user} {COMPOSE_BINARY} up -d",
            f"sleep {STARTUP_WAIT_SECONDS}",
        ]

    def _acme_permission_commands(self) -> list[str]:
        # Traefik refuses an acme.json readable by group or others
        return [
            f"sleep {ACME_WAIT_SECONDS}",
            "for acme_file in /var/lib/docker/volumes/*traefik*/_data/acme.json; do",
            '    if [ -f "$acme_file" ]; then',
            '        chmod 600 "$acme_file"',
            '        chown root:root "$acme_file"',
            '        echo "Fixed permissions for acme.json: $acme_file"',
            "        break",
            "    fi",
            "done",
            f"sudo -u {self.service_user} docker exec traefik chmod 600 "
            "/letsencrypt/acme.json 2>/dev/null || true",
            f'echo "n8n setup completed. Check {self.env_file} for credentials."',
        ]

    def _logrotate_commands(self) -> list[str]:
        return heredoc(
            "/etc/logrotate.d/docker-containers",
            self.render_logrotate_policy(),
            "LOGROTATE_EOF",
        )

    def commands(self) -> list[str]:
        """Every provisioning command except the diagnostic script download."""
        return [
            "set -e",
            *self._system_commands(),
            *self._directory_commands(),
            *heredoc(self.compose_file, self.render_compose_file(), "DOCKER_COMPOSE_EOF"),
            *self.render_env_file_commands(),
            f"chown -R {self.service_user}:{self.service_user} {self.base_dir}",
            *self._start_commands(),
            *self._acme_permission_commands(),
            *self._logrotate_commands(),
        ]

    def build_user_data(
        self, diagnostics_asset: s3_assets.Asset | None = None
    ) -> ec2.UserData:
        """Assemble the Linux user data for the instance.

        Args:
            diagnostics_asset: S3 asset holding the diagnostic script. When
                given, the script is downloaded and linked onto the PATH.

        Returns:
            User data ready to attach to the EC2 instance.
        """
        user_data = ec2.UserData.for_linux()
        user_data.add_commands(*self.commands())

        if diagnostics_asset is not None:
            local_path = user_data.add_s3_download_command(
                bucket=diagnostics_asset.bucket,
                bucket_key=diagnostics_asset.s3_object_key,
                local_file=self.diagnostic_script_path,
            )
            quoted = shlex.quote(local_path)
            user_data.add_commands(
                f"chmod +x {quoted}",
                f"chown {self.service_user}:{self.service_user} {quoted}",
                f"ln -sf {quoted} {DIAGNOSTIC_SCRIPT_LINK}",
                f'echo "{DIAGNOSTIC_SCRIPT_NAME} installed at {local_path}"',
            )

        return user_data
