"""
状态变化检测模块。

将新写入的状态记录与该服务的前一条记录比较，判断：
1. 状态是否发生变化；
2. 变化是否值得通知（按显式的 (旧状态, 新状态) 规则表）；
3. 通知属于哪个类别（恶化 / 恢复 / 错误告警 / 警告告警 / 一般状态变化）。

前一条记录每次都从存储重新读取，不跨轮次缓存。
"""
import logging
from dataclasses import dataclass
from typing import Optional

from servicehub.models.enums import StatusValue, TransitionCategory
from servicehub.models.service import Service, ServiceStatus
from servicehub.services.status_store import StatusStore

logger = logging.getLogger(__name__)

S = StatusValue
C = TransitionCategory

# 值得通知的状态变化（有方向）及其类别
NOTIFY_RULES: dict[tuple[StatusValue, StatusValue], TransitionCategory] = {
    # 服务恶化
    (S.ONLINE, S.OFFLINE): C.ONLINE_TO_OFFLINE,
    (S.ONLINE, S.ERROR): C.ONLINE_TO_OFFLINE,
    (S.ONLINE, S.WARNING): C.WARNING_ALERT,
    (S.WARNING, S.OFFLINE): C.STATUS_CHANGE,
    (S.WARNING, S.ERROR): C.ERROR_ALERT,
    # 服务恢复
    (S.OFFLINE, S.ONLINE): C.OFFLINE_TO_ONLINE,
    (S.ERROR, S.ONLINE): C.OFFLINE_TO_ONLINE,
    (S.OFFLINE, S.WARNING): C.WARNING_ALERT,
    (S.ERROR, S.WARNING): C.WARNING_ALERT,
}


@dataclass(frozen=True)
class Transition:
    """一次状态变化（previous 为 UNKNOWN 表示首次检查）。"""
    previous: StatusValue
    current: StatusValue
    changed: bool
    notify: bool
    category: TransitionCategory

    @property
    def is_first_check(self) -> bool:
        return self.previous == StatusValue.UNKNOWN

    def describe(self) -> str:
        old = "NEW" if self.is_first_check else self.previous.value
        return f"{old} -> {self.current.value}"


def _first_check_category(current: StatusValue) -> TransitionCategory:
    """首次检查没有方向，只按新状态归类。"""
    if current == S.ERROR:
        return C.ERROR_ALERT
    if current == S.WARNING:
        return C.WARNING_ALERT
    return C.STATUS_CHANGE


def classify(previous: Optional[StatusValue], current: StatusValue) -> Transition:
    """对 (旧状态, 新状态) 分类。previous 为 None 或 UNKNOWN 表示没有历史记录。"""
    previous = StatusValue(previous) if previous else S.UNKNOWN
    current = StatusValue(current)

    if previous == S.UNKNOWN:
        # 首次检查：非 ONLINE 才通知
        return Transition(
            previous, current,
            changed=True,
            notify=current != S.ONLINE,
            category=_first_check_category(current),
        )

    if previous == current:
        return Transition(previous, current, changed=False, notify=False, category=C.STATUS_CHANGE)

    category = NOTIFY_RULES.get((previous, current))
    if category is not None:
        return Transition(previous, current, changed=True, notify=True, category=category)

    # 规则表之外的变化归为一般状态变化，只记录日志和实时推送，不进入通知流程
    return Transition(previous, current, changed=True, notify=False, category=C.STATUS_CHANGE)


class TransitionDetector:
    """读取前一条状态记录并对变化分类。"""

    def __init__(self, store: StatusStore):
        self.store = store

    async def detect(self, service: Service, record: ServiceStatus) -> Transition:
        prior = await self.store.previous_status_record(record)
        transition = classify(StatusValue(prior.status) if prior else None, StatusValue(record.status))
        if transition.changed:
            logger.info(
                f"{service.name}: {record.status} ({record.response_time}ms) [STATUS CHANGED {transition.describe()}]"
            )
        else:
            logger.debug(f"{service.name}: {record.status} ({record.response_time}ms)")
        return transition
