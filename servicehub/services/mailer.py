"""
SMTP 邮件发送模块。

通过 aiosmtplib 将一封 multipart（纯文本 + HTML）邮件批量发送给所有收件人。
"""
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Sequence

import aiosmtplib

from servicehub.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def build_message(sender: str, recipients: Sequence[str], subject: str, text: str, html: str) -> MIMEMultipart:
    """构建 multipart/alternative 邮件。"""
    msg = MIMEMultipart("alternative")
    msg["From"] = f'"Service Hub" <{sender}>'
    msg["To"] = ", ".join(recipients)
    msg["Subject"] = subject
    msg.attach(MIMEText(text, "plain", "utf-8"))
    msg.attach(MIMEText(html, "html", "utf-8"))
    return msg


class EmailSender:
    """邮件传输封装，连接参数来自配置。"""

    def __init__(self, config: Settings | None = None):
        self.config = config or default_settings

    async def send(self, recipients: Sequence[str], subject: str, text: str, html: str) -> None:
        """一次调用发送给全部收件人；失败时抛出 aiosmtplib 的异常。"""
        if not recipients:
            logger.warning("Email send skipped: no recipients")
            return
        cfg = self.config
        msg = build_message(cfg.smtp_from, recipients, subject, text, html)
        kwargs = {
            "hostname": cfg.smtp_host,
            "port": cfg.smtp_port,
        }
        if cfg.smtp_user:
            kwargs["username"] = cfg.smtp_user
            kwargs["password"] = cfg.smtp_password
        if cfg.smtp_ssl:
            kwargs["use_tls"] = True
        else:
            kwargs["start_tls"] = True
        await aiosmtplib.send(msg, **kwargs)
        logger.info(f"Email sent to {len(recipients)} recipients: {subject}")
