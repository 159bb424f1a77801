# gemflows/fetcher.py
"""Recipe fetcher
------------------
Resolves a recipe name to YAML bytes: local files win, otherwise the recipe is
downloaded from the remote catalog and cached on disk. A stale cache entry is
still used when the network or the catalog fails.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import httpx

from gemflows.exceptions import RecipeFetchError
from gemflows.utils.config import DEFAULT_RECIPES_BASE_URL, Settings, get_settings
from gemflows.utils.logger import get_logger

GITHUB_REPO = "ProggePal/palsGemFlows"
GITHUB_REF = "main"
GITHUB_DIR = "workflows"
USER_AGENT = "pals-gemflows"


class RecipeSource(str, Enum):
    remote = "remote"
    local_dev = "local_dev"


@dataclass
class RecipeResult:
    data: bytes
    source: RecipeSource
    recipe_name: str  # e.g. "marketing/blog_post" or the local path
    url: Optional[str] = None


def normalize_remote_recipe_path(name: str) -> str:
    name = name.strip().lstrip("/")
    low = name.lower()
    if not (low.endswith(".yaml") or low.endswith(".yml")):
        name += ".yaml"
    return name


def strip_yaml_ext(path: str) -> str:
    low = path.lower()
    if low.endswith(".yaml"):
        return path[: -len(".yaml")]
    if low.endswith(".yml"):
        return path[: -len(".yml")]
    return path


class RecipeFetcher:
    """Fetches recipes from disk or from the remote catalog with an on-disk cache."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        base_url: Optional[str] = None,
        cache_dir: Optional[Path] = None,
        cache_ttl_seconds: Optional[int] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = base_url
        self.cache_dir = Path(cache_dir) if cache_dir else self.settings.recipe_cache_dir
        self.cache_ttl_seconds = (
            cache_ttl_seconds if cache_ttl_seconds is not None else self.settings.RECIPE_CACHE_TTL_SECONDS
        )
        self._client = client
        self.log = get_logger(__name__)

    # ---- http ----

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.settings.HTTP_TIMEOUT_SECONDS, follow_redirects=True)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "RecipeFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---- cache ----

    def cache_file_path(self, url: str) -> Path:
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}.yaml"

    def _read_fresh_cache(self, path: Path) -> Optional[bytes]:
        try:
            age = time.time() - path.stat().st_mtime
        except OSError:
            return None
        if self.cache_ttl_seconds > 0 and age > self.cache_ttl_seconds:
            return None
        return self._read_any_cache(path)

    @staticmethod
    def _read_any_cache(path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except OSError:
            return None

    def _write_cache(self, path: Path, data: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            self.log.warning(f"Could not cache recipe at {path}: {e}")

    # ---- public ----

    def resolve_base_url(self) -> str:
        base = (self.base_url or "").strip() or self.settings.RECIPES_BASE_URL or DEFAULT_RECIPES_BASE_URL
        return base if base.endswith("/") else base + "/"

    def get_recipe_data(self, name_or_path: str) -> RecipeResult:
        name_or_path = (name_or_path or "").strip()
        if not name_or_path:
            raise RecipeFetchError("recipe name or path is required")

        local = Path(name_or_path)
        if local.is_file():
            try:
                data = local.read_bytes()
            except OSError as e:
                raise RecipeFetchError(f"read local recipe {name_or_path}: {e}") from e
            return RecipeResult(data=data, source=RecipeSource.local_dev, recipe_name=name_or_path)

        recipe_path = normalize_remote_recipe_path(name_or_path)
        url = self.resolve_base_url() + recipe_path
        recipe_name = strip_yaml_ext(recipe_path)
        cache_path = self.cache_file_path(url)

        cached = self._read_fresh_cache(cache_path)
        if cached is not None:
            self.log.debug(f"Using cached recipe for {url}")
            return RecipeResult(data=cached, source=RecipeSource.remote, recipe_name=recipe_name, url=url)

        def _fallback(reason: str) -> RecipeResult:
            stale = self._read_any_cache(cache_path)
            if stale is None:
                raise RecipeFetchError(reason)
            self.log.warning(f"{reason}; using cached copy")
            return RecipeResult(data=stale, source=RecipeSource.remote, recipe_name=recipe_name, url=url)

        try:
            resp = self._http().get(url)
        except httpx.HTTPError as e:
            return _fallback(f"fetch remote recipe: {e}")

        if resp.status_code != 200:
            return _fallback(f"recipe not found in catalog (HTTP {resp.status_code}): {url}")

        data = resp.content
        self._write_cache(cache_path, data)
        return RecipeResult(data=data, source=RecipeSource.remote, recipe_name=recipe_name, url=url)

    def list_remote_keys(self, ref: str = GITHUB_REF) -> list[str]:
        """Recipe keys in the default GitHub catalog (best effort, for listing)."""
        ref = ref.strip() or GITHUB_REF
        url = f"https://api.github.com/repos/{GITHUB_REPO}/contents/{GITHUB_DIR}"
        try:
            resp = self._http().get(url, params={"ref": ref}, headers={"User-Agent": USER_AGENT})
        except httpx.HTTPError as e:
            raise RecipeFetchError(f"list remote recipes: {e}") from e
        if resp.status_code != 200:
            raise RecipeFetchError(
                f"list remote recipes failed (HTTP {resp.status_code}): {resp.text.strip()}"
            )

        out: list[str] = []
        for entry in resp.json():
            if entry.get("type") != "file":
                continue
            name = entry.get("name") or ""
            low = name.lower()
            if not (low.endswith(".yaml") or low.endswith(".yml")):
                continue
            key = strip_yaml_ext(name)
            if key and key not in out:
                out.append(key)
        return out
