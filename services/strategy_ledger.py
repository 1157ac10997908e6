import logging
from dataclasses import asdict, dataclass
from typing import Optional

from services.clock import Clock

logger = logging.getLogger(__name__)

# 安い順
TIERS = ("direct", "approval", "time_clock", "web")
WORK_TIME = "work_time"


def tier_cost(tier: str) -> int:
    return TIERS.index(tier)


def cheapest_available(direct_ok: bool, approval_ok: bool, time_clock_ok: bool) -> str:
    """塞がっていない中で最も安い手段"""
    if direct_ok:
        return "direct"
    if approval_ok:
        return "approval"
    if time_clock_ok:
        return "time_clock"
    return "web"


@dataclass
class StrategyCacheEntry:
    month: str
    operation_type: str
    direct_ok: bool = True
    approval_ok: bool = True
    time_clock_ok: bool = True
    best_strategy: str = "direct"
    detected_at: str = ""

    def is_ok(self, tier: str) -> bool:
        if tier == "web":
            return True
        return getattr(self, f"{tier}_ok")

    def allows(self, tier: str) -> bool:
        """このtierを試す価値があるか

        best=web ならAPI手段はすべて飛ばす。それ以外は best より安い手段と
        失敗済みの手段を飛ばす。
        """
        if self.best_strategy == "web":
            return tier == "web"
        return tier_cost(tier) >= tier_cost(self.best_strategy) and self.is_ok(tier)

    def to_dict(self) -> dict:
        return asdict(self)


class StrategyLedger:
    """(月, 操作種別) ごとの書き込み手段キャッシュ

    月が変わると空から学び直す。
    """

    def __init__(self, clock: Clock = None):
        self._clock = clock or Clock()
        self._entries: dict[tuple[str, str], StrategyCacheEntry] = {}

    def get(self, month: str, operation_type: str = WORK_TIME) -> Optional[StrategyCacheEntry]:
        return self._entries.get((month, operation_type))

    def set(
        self,
        month: str,
        operation_type: str,
        direct_ok: bool,
        approval_ok: bool,
        time_clock_ok: bool,
        best_strategy: Optional[str] = None,
    ) -> StrategyCacheEntry:
        if best_strategy is None:
            best_strategy = cheapest_available(direct_ok, approval_ok, time_clock_ok)
        if best_strategy not in TIERS:
            raise ValueError(f"Unknown strategy: {best_strategy}")

        entry = StrategyCacheEntry(
            month=month,
            operation_type=operation_type,
            direct_ok=direct_ok,
            approval_ok=approval_ok,
            time_clock_ok=time_clock_ok,
            best_strategy=best_strategy,
            detected_at=self._clock.timestamp(),
        )
        previous = self._entries.get((month, operation_type))
        if previous is None or previous.best_strategy != best_strategy:
            logger.info("[Strategy] %s/%s best=%s", month, operation_type, best_strategy)
        self._entries[(month, operation_type)] = entry
        return entry

    def purge_other_months(self, current_month: Optional[str] = None) -> int:
        """当月以外のエントリを削除し、削除件数を返す"""
        current_month = current_month or self._clock.month_str()
        stale = [key for key in self._entries if key[0] != current_month]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.info("[Strategy] 前月以前のキャッシュを %d 件削除", len(stale))
        return len(stale)

    def entries(self) -> list[StrategyCacheEntry]:
        return list(self._entries.values())
