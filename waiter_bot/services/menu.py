"""
Menu providers.

The pipeline asks a MenuProvider for a tenant's menu once per request and
treats the result as a read-only snapshot. Unknown tenants raise
UnknownTenantError so the caller can reject the request before any session
is touched.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from ..errors import UnknownTenantError
from ..schemas import MenuItem, TenantConfig

logger = logging.getLogger(__name__)


class MenuProvider(ABC):
    """Abstract source of tenant menus."""

    @abstractmethod
    def get(self, tenant_id: str) -> List[MenuItem]:
        """Return the tenant's available menu items. Raises UnknownTenantError."""
        pass

    def get_tenant_config(self, tenant_id: str) -> TenantConfig:
        return TenantConfig(tenant_id=tenant_id)


class StaticMenuProvider(MenuProvider):
    """
    Menus held in memory, keyed by tenant id.

    Suitable for tests, demos and small single-restaurant deployments where
    the menu ships with the code or a JSON file.
    """

    def __init__(
        self,
        menus: Dict[str, Iterable[Union[MenuItem, dict]]],
        tenant_configs: Optional[Dict[str, TenantConfig]] = None,
    ):
        self._menus: Dict[str, List[MenuItem]] = {
            tenant_id: [item if isinstance(item, MenuItem) else MenuItem.model_validate(item) for item in items]
            for tenant_id, items in menus.items()
        }
        self._tenant_configs = tenant_configs or {}

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "StaticMenuProvider":
        """
        Load menus from a JSON file shaped like:

            {"tenants": {"<tenant_id>": {"name": "...", "menu": [{...MenuItem...}]}}}
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        menus = {}
        configs = {}
        for tenant_id, tenant in raw.get("tenants", {}).items():
            try:
                menus[tenant_id] = [MenuItem.model_validate(item) for item in tenant.get("menu", [])]
                configs[tenant_id] = TenantConfig.model_validate(
                    {"tenant_id": tenant_id, **{k: v for k, v in tenant.items() if k != "menu"}}
                )
            except ValidationError as e:
                logger.error("Skipping tenant %s with invalid menu data: %s", tenant_id, e)
        logger.info("Loaded menus for %d tenants from %s", len(menus), path)
        return cls(menus, configs)

    def get(self, tenant_id: str) -> List[MenuItem]:
        if tenant_id not in self._menus:
            raise UnknownTenantError(tenant_id)
        return [item for item in self._menus[tenant_id] if item.available]

    def get_tenant_config(self, tenant_id: str) -> TenantConfig:
        if tenant_id not in self._menus:
            raise UnknownTenantError(tenant_id)
        return self._tenant_configs.get(tenant_id) or TenantConfig(tenant_id=tenant_id)
