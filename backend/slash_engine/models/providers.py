"""
Provider Directory

Known billers per category with the numbers the dispatcher dials.
Medical providers are user-entered and have no fixed entry.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional

from .domain import BillCategory


@dataclass(frozen=True)
class Provider:
    id: str
    display_name: str
    category: BillCategory
    retention_phone: Optional[str] = None
    customer_service_phone: Optional[str] = None

    @property
    def dial_number(self) -> Optional[str]:
        """Retention line first, then general customer service."""
        return self.retention_phone or self.customer_service_phone


# =============================================================================
# INTERNET / CABLE
# =============================================================================

_INTERNET = [
    Provider("comcast", "Xfinity", BillCategory.INTERNET, retention_phone="1-800-934-6489"),
    Provider("spectrum", "Spectrum", BillCategory.INTERNET, retention_phone="1-866-564-2255"),
    Provider("att", "AT&T Internet", BillCategory.INTERNET, retention_phone="1-800-331-0500"),
    Provider("verizon", "Verizon Fios", BillCategory.INTERNET, retention_phone="1-888-294-4357"),
    Provider("cox", "Cox Communications", BillCategory.INTERNET, retention_phone="1-800-234-3993"),
    Provider("optimum", "Optimum", BillCategory.INTERNET, retention_phone="1-866-218-3130"),
]

# =============================================================================
# CELL PHONE
# =============================================================================

_CELL_PHONE = [
    Provider("tmobile", "T-Mobile", BillCategory.CELL_PHONE,
             retention_phone="1-877-746-0909", customer_service_phone="1-800-937-8997"),
    Provider("verizon_wireless", "Verizon Wireless", BillCategory.CELL_PHONE,
             retention_phone="1-888-294-4357", customer_service_phone="1-800-922-0204"),
    Provider("att_wireless", "AT&T Wireless", BillCategory.CELL_PHONE,
             retention_phone="1-800-331-0500", customer_service_phone="1-800-331-0500"),
    Provider("mint_mobile", "Mint Mobile", BillCategory.CELL_PHONE,
             customer_service_phone="1-800-683-7017"),
    Provider("cricket", "Cricket Wireless", BillCategory.CELL_PHONE,
             customer_service_phone="1-800-274-2538"),
]

# =============================================================================
# INSURANCE (AUTO / HOME)
# =============================================================================

_INSURANCE = [
    Provider("state_farm", "State Farm", BillCategory.INSURANCE, customer_service_phone="1-800-782-8332"),
    Provider("geico", "Geico", BillCategory.INSURANCE, customer_service_phone="1-800-207-7847"),
    Provider("progressive", "Progressive", BillCategory.INSURANCE, customer_service_phone="1-800-776-4737"),
    Provider("allstate", "Allstate", BillCategory.INSURANCE, customer_service_phone="1-800-255-7828"),
    Provider("liberty_mutual", "Liberty Mutual", BillCategory.INSURANCE, customer_service_phone="1-800-290-8711"),
    Provider("usaa", "USAA", BillCategory.INSURANCE, customer_service_phone="1-800-531-8722"),
]


PROVIDERS: Dict[str, Provider] = {p.id: p for p in _INTERNET + _CELL_PHONE + _INSURANCE}


def get_provider(provider_id: str) -> Optional[Provider]:
    return PROVIDERS.get(provider_id)


def providers_in_category(category: BillCategory) -> List[Provider]:
    return [p for p in PROVIDERS.values() if p.category == category]
