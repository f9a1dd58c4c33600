"""
匹配额度包目录（静态价目表）

展示价即最终价：平台吸收渠道手续费（默认费率为 0），
退款按单个支付的单价 × 未使用次数计算。
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

CENT = Decimal("0.01")


class PlanType(str, Enum):
    """额度包类型"""
    PACK_DISCOVERY = "PACK_DISCOVERY"
    PACK_STANDARD = "PACK_STANDARD"
    PACK_PRO = "PACK_PRO"


@dataclass(frozen=True)
class MatchPack:
    plan_type: PlanType
    label: str
    label_fr: str
    matches: int
    base_amount: Decimal
    description: str
    is_recommended: bool = False


@dataclass(frozen=True)
class PackQuote:
    """额度包报价（读取时计算）"""
    pack: MatchPack
    fees: Decimal
    total_amount: Decimal
    price_per_match: Decimal


MATCH_PACKS: tuple[MatchPack, ...] = (
    MatchPack(
        plan_type=PlanType.PACK_DISCOVERY,
        label="Le Curieux",
        label_fr="Le Curieux",
        matches=2,
        base_amount=Decimal("12.00"),
        description="Pour tester le marché sans risque.",
    ),
    MatchPack(
        plan_type=PlanType.PACK_STANDARD,
        label="L'Efficace",
        label_fr="L'Efficace",
        matches=5,
        base_amount=Decimal("25.00"),
        description="L'offre idéale : 5 opportunités ciblées.",
        is_recommended=True,
    ),
    MatchPack(
        plan_type=PlanType.PACK_PRO,
        label="Le Déterminé",
        label_fr="Le Déterminé",
        matches=15,
        base_amount=Decimal("60.00"),
        description="Pour une recherche intensive et rapide.",
    ),
)


def round_money(value: Decimal) -> Decimal:
    """金额四舍五入到分"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """元 -> 分（支付渠道使用最小货币单位）"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return round_money(Decimal(int(amount)) / 100)


def calculate_fees(base_amount: Decimal, fee_percentage: Decimal, fee_fixed: Decimal) -> Decimal:
    return round_money(Decimal(base_amount) * Decimal(fee_percentage) + Decimal(fee_fixed))


def calculate_price_per_match(base_amount: Decimal, matches: int) -> Decimal:
    if matches <= 0:
        raise ValueError("matches must be positive")
    return round_money(Decimal(base_amount) / matches)


def calculate_refund_amount(price_per_match: Decimal, unused_matches: int) -> Decimal:
    return round_money(Decimal(price_per_match) * unused_matches)


def get_pack(plan_type: str) -> Optional[MatchPack]:
    """按类型查找额度包，未知类型返回 None"""
    for pack in MATCH_PACKS:
        if pack.plan_type.value == plan_type:
            return pack
    return None


def quote(
    pack: MatchPack,
    *,
    fee_percentage: Decimal = Decimal("0"),
    fee_fixed: Decimal = Decimal("0"),
) -> PackQuote:
    fees = calculate_fees(pack.base_amount, fee_percentage, fee_fixed)
    return PackQuote(
        pack=pack,
        fees=fees,
        total_amount=round_money(pack.base_amount + fees),
        price_per_match=calculate_price_per_match(pack.base_amount, pack.matches),
    )


def list_available(
    *,
    fee_percentage: Decimal = Decimal("0"),
    fee_fixed: Decimal = Decimal("0"),
) -> list[PackQuote]:
    """按定义顺序返回全部额度包报价"""
    return [quote(p, fee_percentage=fee_percentage, fee_fixed=fee_fixed) for p in MATCH_PACKS]
