"""Configuration constants for n8n host provisioning.

This module defines the on-host layout, container images and the Docker
Compose template written to the instance at first boot.
"""

SERVICE_USER: str = "ec2-user"
BASE_DIR: str = "/opt/n8n"
COMPOSE_BINARY: str = "/usr/local/bin/docker-compose"
COMPOSE_RELEASE_URL: str = (
    "https://github.com/docker/compose/releases/latest/download/"
    "docker-compose-$(uname -s)-$(uname -m)"
)
DIAGNOSTIC_SCRIPT_NAME: str = "check-traefik-local"
DIAGNOSTIC_SCRIPT_LINK: str = f"/usr/local/bin/{DIAGNOSTIC_SCRIPT_NAME}"

SYSTEM_PACKAGES: tuple[str, ...] = (
    "docker",
    "openssl",
    "curl",
    "bind-utils",
    "python3-requests",
)

STARTUP_WAIT_SECONDS: int = 30
ACME_WAIT_SECONDS: int = 15

POSTGRES_IMAGE: str = "postgres:15-alpine"
N8N_IMAGE: str = "n8nio/n8n:latest"
TRAEFIK_IMAGE: str = "traefik:v2.11"
N8N_PORT: int = 5678

DOMAIN_PLACEHOLDER: str = "${DOMAIN_NAME}"

# ${VAR:-default} references are resolved by docker compose from the .env file.
# {image} style tokens and DOMAIN_PLACEHOLDER are replaced literally at synth
# time; str.format cannot be used because of the compose ${...} syntax.
COMPOSE_TEMPLATE: str = """services:
  postgres:
    image: {postgres_image}
    container_name: postgres
    restart: unless-stopped
    environment:
      POSTGRES_USER: ${POSTGRES_USER:-n8n}
      POSTGRES_PASSWORD: ${POSTGRES_PASSWORD:-n8n}
      POSTGRES_DB: ${POSTGRES_DB:-n8n}
    volumes:
      - postgres_data:/var/lib/postgresql/data
    healthcheck:
      test: ['CMD-SHELL', 'pg_isready -U ${POSTGRES_USER:-n8n}']
      interval: 10s
      timeout: 5s
      retries: 5
    networks:
      - n8n-network

  n8n:
    image: {n8n_image}
    container_name: n8n
    restart: unless-stopped
    ports:
      - "{n8n_port}:{n8n_port}"
    environment:
      - DB_TYPE=postgresdb
      - DB_POSTGRESDB_HOST=postgres
      - DB_POSTGRESDB_DATABASE=${POSTGRES_DB:-n8n}
      - DB_POSTGRESDB_USER=${POSTGRES_USER:-n8n}
      - DB_POSTGRESDB_PASSWORD=${POSTGRES_PASSWORD:-n8n}
      - N8N_HOST=${DOMAIN_NAME}
      - N8N_PROTOCOL=https
      - N8N_PORT={n8n_port}
      - WEBHOOK_URL=https://${DOMAIN_NAME}/
      - GENERIC_TIMEZONE=UTC
      - TZ=UTC
      - N8N_BASIC_AUTH_ACTIVE=true
      - N8N_BASIC_AUTH_USER=${N8N_BASIC_AUTH_USER:-admin}
      - N8N_BASIC_AUTH_PASSWORD=${N8N_BASIC_AUTH_PASSWORD:-changeme}
    volumes:
      - n8n_data:/home/node/.n8n
      - ./local-files:/files
    depends_on:
      postgres:
        condition: service_healthy
    networks:
      - n8n-network
    labels:
      - "traefik.enable=true"
      - "traefik.http.routers.n8n.rule=Host(`${DOMAIN_NAME}`)"
      - "traefik.http.routers.n8n.entrypoints=websecure"
      - "traefik.http.routers.n8n.tls=true"
      - "traefik.http.routers.n8n.tls.certresolver=letsencrypt"
      - "traefik.http.services.n8n.loadbalancer.server.port={n8n_port}"

  traefik:
    image: {traefik_image}
    container_name: traefik
    restart: unless-stopped
    ports:
      - "80:80"
      - "443:443"
    environment:
      - DOMAIN_NAME=${DOMAIN_NAME}
    volumes:
      - /var/run/docker.sock:/var/run/docker.sock:ro
      - traefik_data:/letsencrypt
    command:
      - --api.dashboard=false
      - --log.level=INFO
      - --accesslog=true
      - --providers.docker=true
      - --providers.docker.exposedbydefault=false
      - --providers.docker.watch=true
      - --entrypoints.web.address=0.0.0.0:80
      - --entrypoints.websecure.address=0.0.0.0:443
      - --entrypoints.web.http.redirections.entrypoint.to=websecure
      - --entrypoints.web.http.redirections.entrypoint.scheme=https
      - --entrypoints.websecure.http.tls=true
      - --certificatesresolvers.letsencrypt.acme.email=${ACME_EMAIL:-admin@${DOMAIN_NAME}}
      - --certificatesresolvers.letsencrypt.acme.storage=/letsencrypt/acme.json
      - --certificatesresolvers.letsencrypt.acme.httpchallenge.entrypoint=web
    healthcheck:
      test: ["CMD-SHELL", "wget --no-verbose --tries=1 --spider http://localhost:80/ || exit 1"]
      interval: 30s
      timeout: 10s
      retries: 3
      start_period: 40s
    networks:
      - n8n-network

volumes:
  postgres_data:
  n8n_data:
  traefik_data:

networks:
  n8n-network:
    driver: bridge
"""

LOGROTATE_POLICY: str = """/var/lib/docker/containers/*/*.log {
    rotate 7
    daily
    compress
    size=10M
    missingok
    delaycompress
    copytruncate
}"""
