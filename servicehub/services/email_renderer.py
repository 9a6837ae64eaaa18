"""
邮件内容渲染模块。

生成服务状态变化通知和系统告警的邮件标题、纯文本正文和 HTML 正文。
"""
from datetime import datetime
from html import escape

from servicehub.core.config import settings
from servicehub.models.enums import StatusValue
from servicehub.models.service import Service, ServiceStatus
from servicehub.services.transition import Transition

STATUS_EMOJI = {
    StatusValue.ONLINE: "✅",
    StatusValue.WARNING: "⚠️",
    StatusValue.ERROR: "❌",
    StatusValue.OFFLINE: "🔴",
    StatusValue.TIMEOUT: "⏱️",
    StatusValue.MAINTENANCE: "🔧",
    StatusValue.UNKNOWN: "❔",
}

STATUS_COLOR = {
    StatusValue.ONLINE: "#16a34a",
    StatusValue.WARNING: "#ca8a04",
    StatusValue.ERROR: "#dc2626",
    StatusValue.OFFLINE: "#6b7280",
    StatusValue.TIMEOUT: "#ea580c",
    StatusValue.MAINTENANCE: "#2563eb",
    StatusValue.UNKNOWN: "#6b7280",
}

SEVERITY_EMOJI = {"info": "ℹ️", "warning": "⚠️", "error": "🚨"}


def status_marker(status: StatusValue | str) -> str:
    """带图标的状态文本，例如 "🔴 OFFLINE"。"""
    status = StatusValue(status)
    return f"{STATUS_EMOJI[status]} {status.value}"


def _format_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S UTC") if value else ""


def build_status_vars(service: Service, transition: Transition, record: ServiceStatus) -> dict:
    """从服务、状态变化和状态记录中提取渲染变量。"""
    return {
        "service_name": service.name,
        "service_icon": service.icon or "🔧",
        "url": service.check_url,
        "category": service.category or "",
        "transition_category": transition.category.value,
        "old_status": "" if transition.is_first_check else status_marker(transition.previous),
        "new_status": status_marker(transition.current),
        "response_time": f"{record.response_time}ms" if record.response_time is not None else "",
        "checked_at": _format_time(record.checked_at),
        "status_code": record.status_code if record.status_code is not None else "",
        "error_message": record.error_message or "",
        "dashboard_url": f"{settings.app_url.rstrip('/')}/dashboard",
    }


def render_status_subject(service: Service, transition: Transition) -> str:
    """标题：状态图标 + 服务名 + 新状态。"""
    return f"{STATUS_EMOJI[transition.current]} {service.name} - Status Changed to {transition.current.value}"


def render_status_text(variables: dict) -> str:
    """纯文本正文，空字段对应的行省略。"""
    lines = [
        "Service Status Alert",
        "",
        f"Service: {variables['service_name']} ({variables['service_icon']})",
        f"Status: {variables['new_status']}",
    ]
    if variables["old_status"]:
        lines.append(f"Previous Status: {variables['old_status']}")
    lines.append(f"URL: {variables['url']}")
    if variables["category"]:
        lines.append(f"Category: {variables['category']}")
    lines.append(f"Change Type: {variables['transition_category']}")
    lines.append(f"Response Time: {variables['response_time']}")
    lines.append(f"Checked At: {variables['checked_at']}")
    if variables["status_code"] != "":
        lines.append(f"Status Code: {variables['status_code']}")
    if variables["error_message"]:
        lines.append(f"Error: {variables['error_message']}")
    lines += ["", f"View Dashboard: {variables['dashboard_url']}", "", "---",
              "This is an automated notification from Service Hub"]
    return "\n".join(lines)


def render_status_html(variables: dict, current: StatusValue) -> str:
    """HTML 正文。"""
    color = STATUS_COLOR[StatusValue(current)]
    v = {k: escape(str(val)) for k, val in variables.items()}
    rows = []
    if v["old_status"]:
        rows.append(("Previous Status", v["old_status"]))
    rows += [
        ("Service URL", v["url"]),
        ("Category", v["category"]),
        ("Change Type", v["transition_category"]),
        ("Response Time", v["response_time"]),
        ("Checked At", v["checked_at"]),
    ]
    if v["status_code"]:
        rows.append(("Status Code", v["status_code"]))
    if v["error_message"]:
        rows.append(("Error Message", f'<span style="color:#dc2626;">{v["error_message"]}</span>'))
    table = "".join(
        f'<tr><td style="padding:8px 0;font-weight:bold;">{label}</td><td>{value}</td></tr>'
        for label, value in rows
    )
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;border:1px solid #e0e0e0;border-radius:8px;overflow:hidden;">
      <div style="background:{color};color:#fff;padding:16px 24px;">
        <h2 style="margin:0;">{v['service_icon']} {v['service_name']}</h2>
        <div style="margin-top:8px;font-weight:bold;">{v['new_status']}</div>
      </div>
      <div style="padding:24px;">
        <table style="width:100%;border-collapse:collapse;">{table}</table>
        <p style="text-align:center;"><a href="{v['dashboard_url']}">View Dashboard</a></p>
      </div>
      <div style="background:#f5f5f5;padding:12px 24px;text-align:center;color:#888;font-size:12px;">
        This is an automated notification from Service Hub
      </div>
    </div>
    """


def render_system_alert(title: str, message: str, severity: str, sent_at: datetime) -> tuple[str, str, str]:
    """系统告警邮件，返回 (subject, text, html)。"""
    emoji = SEVERITY_EMOJI.get(severity, SEVERITY_EMOJI["info"])
    subject = f"{emoji} {title}"
    text = f"{title}\n\n{message}\n\nSent at: {_format_time(sent_at)}"
    html = f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;border:1px solid #e0e0e0;border-radius:8px;overflow:hidden;">
      <div style="padding:16px 24px;"><h2 style="margin:0;">{emoji} {escape(title)}</h2>
        <p style="color:#6b7280;">{_format_time(sent_at)}</p></div>
      <div style="padding:24px;white-space:pre-wrap;">{escape(message)}</div>
    </div>
    """
    return subject, text, html
