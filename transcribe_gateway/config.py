import os
from typing import List, Literal, Mapping, Optional

from pydantic import BaseModel

from .errors import ConfigError

GatewayMode = Literal["queue", "direct"]
GATEWAY_MODES = ("queue", "direct")

_TRUTHY = {"1", "true", "yes"}


def _flag(env: Mapping[str, str], name: str, default: str = "false") -> bool:
    return env.get(name, default).lower() in _TRUTHY


class Settings(BaseModel):
    mode: GatewayMode = "queue"

    backend_base_url: str = ""

    runpod_api_base: str = "https://api.runpod.ai/v2"
    runpod_endpoint_id: str = ""
    runpod_api_key: str = ""
    runpod_input_key: str = "audio_file_url"
    runpod_output_key: str = "midi_file_url"

    poll_interval_sec: float = 3.0
    poll_max_attempts: int = 70
    request_timeout_sec: float = 30.0
    # Worker threads available to long-running direct relays.
    relay_thread_limit: int = 200

    s3_bucket: str = ""
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[str] = None
    s3_endpoint: Optional[str] = None
    s3_region: Optional[str] = None
    s3_force_path_style: bool = False
    s3_public_base_url: str = ""
    s3_key_prefix: str = "runpod_inputs"
    s3_object_acl: str = "public-read"
    s3_delete_staged: bool = False

    upload_dir: str = "/tmp/transcribe-gateway"
    cors_allow_origins: List[str] = ["*"]
    log_level: str = "INFO"
    port: int = 3000

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        mode = env.get("GATEWAY_MODE", "queue").lower()
        if mode not in GATEWAY_MODES:
            raise ConfigError(f"GATEWAY_MODE must be one of {', '.join(GATEWAY_MODES)}, got {mode!r}")

        origins = env.get("CORS_ALLOW_ORIGINS", "*")
        try:
            return cls(
                mode=mode,
                backend_base_url=env.get("BACKEND_BASE_URL", "").rstrip("/"),
                runpod_api_base=env.get("RUNPOD_API_BASE", "https://api.runpod.ai/v2").rstrip("/"),
                runpod_endpoint_id=env.get("RUNPOD_ENDPOINT_ID", ""),
                runpod_api_key=env.get("RUNPOD_API_KEY", ""),
                runpod_input_key=env.get("RUNPOD_INPUT_KEY", "audio_file_url"),
                runpod_output_key=env.get("RUNPOD_OUTPUT_KEY", "midi_file_url"),
                poll_interval_sec=float(env.get("POLL_INTERVAL_SEC", "3")),
                poll_max_attempts=int(env.get("POLL_MAX_ATTEMPTS", "70")),
                request_timeout_sec=float(env.get("REQUEST_TIMEOUT_SEC", "30")),
                relay_thread_limit=int(env.get("RELAY_THREAD_LIMIT", "200")),
                s3_bucket=env.get("S3_BUCKET", ""),
                s3_access_key_id=env.get("S3_ACCESS_KEY_ID"),
                s3_secret_access_key=env.get("S3_SECRET_ACCESS_KEY"),
                s3_endpoint=env.get("S3_ENDPOINT"),
                s3_region=env.get("S3_REGION"),
                s3_force_path_style=_flag(env, "S3_FORCE_PATH_STYLE"),
                s3_public_base_url=env.get("S3_PUBLIC_BASE_URL", "").rstrip("/"),
                s3_key_prefix=env.get("S3_KEY_PREFIX", "runpod_inputs").strip("/"),
                s3_object_acl=env.get("S3_OBJECT_ACL", "public-read"),
                s3_delete_staged=_flag(env, "S3_DELETE_STAGED"),
                upload_dir=env.get("UPLOAD_DIR", "/tmp/transcribe-gateway"),
                cors_allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
                log_level=env.get("LOG_LEVEL", "INFO").upper(),
                port=int(env.get("PORT", "3000")),
            )
        except ValueError as exc:
            # pydantic's ValidationError is a ValueError too
            raise ConfigError(f"Invalid configuration: {exc}") from exc

    @property
    def runpod_base_url(self) -> str:
        return f"{self.runpod_api_base}/{self.runpod_endpoint_id}"

    @property
    def runpod_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.runpod_api_key}",
            "Content-Type": "application/json",
        }

    def require(self) -> None:
        missing = []
        if self.mode == "queue":
            if not self.runpod_endpoint_id:
                missing.append("RUNPOD_ENDPOINT_ID")
            if not self.runpod_api_key:
                missing.append("RUNPOD_API_KEY")
            if not self.s3_bucket:
                missing.append("S3_BUCKET")
        elif not self.backend_base_url:
            missing.append("BACKEND_BASE_URL")
        if missing:
            raise ConfigError(f"Missing required env vars: {', '.join(missing)}")
