import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from pathlib import Path
from typing import Any, Dict

import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape
from tenacity import retry, stop_after_attempt, wait_exponential

from app.core.config import ResendConfig, SMTPConfig
from app.models.email_log import EmailLog, EmailStatus

logger = logging.getLogger("abstractflow.mail")


class EmailService:
    _SENTINEL = object()

    def __init__(
        self,
        *,
        smtp_config: SMTPConfig | None | object = _SENTINEL,
        resend_config: ResendConfig | None | object = _SENTINEL,
        log_client: Any | None = None,
    ):
        # 中文注释:
        # - smtp_config / resend_config 支持依赖注入，方便单测与不同环境切换。
        # - 若调用方显式传 None，则视为禁用该 provider。
        if smtp_config is self._SENTINEL:
            smtp_config = SMTPConfig.from_env()
        if resend_config is self._SENTINEL:
            resend_config = ResendConfig.from_env()

        self.smtp_config: SMTPConfig | None = smtp_config  # type: ignore[assignment]
        self.resend_config: ResendConfig | None = resend_config  # type: ignore[assignment]

        if self.resend_config:
            resend.api_key = self.resend_config.api_key

        # Path to templates: backend/app/core/templates
        templates_dir = Path(__file__).resolve().parent / "templates"
        self._jinja = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )

        # email_logs 写入 client（缺省为空：单测/CI 不必强依赖 Supabase）
        self._log_client = log_client

    def is_configured(self) -> bool:
        return bool(self.smtp_config or self.resend_config)

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        return self._jinja.get_template(template_name).render(**context)

    def send_email(
        self,
        *,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
        from_name: str | None = None,
        from_email: str | None = None,
    ) -> bool:
        """
        发送邮件（同步）。

        中文注释:
        - 单测默认走 SMTP 路径（会 patch smtplib.SMTP）。
        - 若 SMTP 未配置但 Resend 已配置，则自动降级走 Resend。
        - from_name / from_email 来自活动级配置（senderName / senderEmail），缺省用全局发件人。
        """
        if self.smtp_config:
            try:
                sender = from_email or self.smtp_config.from_email
                msg = MIMEMultipart("alternative")
                msg["Subject"] = subject
                msg["From"] = formataddr((from_name, sender)) if from_name else sender
                msg["To"] = to_email

                if text_body:
                    msg.attach(MIMEText(text_body, "plain", "utf-8"))
                msg.attach(MIMEText(html_body, "html", "utf-8"))

                with smtplib.SMTP(self.smtp_config.host, self.smtp_config.port) as server:
                    if self.smtp_config.use_starttls:
                        server.starttls()
                    if self.smtp_config.user and self.smtp_config.password:
                        server.login(self.smtp_config.user, self.smtp_config.password)
                    server.sendmail(sender, [to_email], msg.as_string())
                return True
            except Exception as e:
                logger.error("[SMTP] send failed to %s: %s", to_email, e)
                return False

        if self.resend_config:
            sender = self.resend_config.sender
            if from_email:
                sender = formataddr((from_name, from_email)) if from_name else from_email
            try:
                self._send_with_retry(to_email, subject, html_body, sender)
                return True
            except Exception as e:
                logger.error("[Resend] send failed to %s: %s", to_email, e)
                return False

        return False

    def send_template_email(
        self,
        *,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
        from_name: str | None = None,
        from_email: str | None = None,
    ) -> bool:
        if not self.is_configured():
            logger.info("[Email] no provider configured, skip '%s' to %s", subject, to_email)
            return False
        try:
            html = self.render_template(template_name, context)
        except Exception as e:
            logger.error("[Email] template render failed (%s): %s", template_name, e)
            return False
        return self.send_email(
            to_email=to_email,
            subject=subject,
            html_body=html,
            from_name=from_name,
            from_email=from_email,
        )

    def deliver(
        self,
        *,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
        abstract_id: str | None = None,
        notification_kind: str | None = None,
        from_name: str | None = None,
        from_email: str | None = None,
    ) -> bool:
        """
        通知投递的入口：渲染、发送并记录 email_logs。失败只记录，不抛异常。
        """
        if not self.is_configured():
            self._log_attempt(
                EmailLog(
                    recipient=to_email,
                    subject=subject,
                    template_name=template_name,
                    status=EmailStatus.SKIPPED,
                    abstract_id=abstract_id,
                    notification_kind=notification_kind,
                    error_message="no email provider configured",
                )
            )
            return False

        ok = self.send_template_email(
            to_email=to_email,
            subject=subject,
            template_name=template_name,
            context=context,
            from_name=from_name,
            from_email=from_email,
        )
        self._log_attempt(
            EmailLog(
                recipient=to_email,
                subject=subject,
                template_name=template_name,
                status=EmailStatus.SENT if ok else EmailStatus.FAILED,
                abstract_id=abstract_id,
                notification_kind=notification_kind,
                error_message=None if ok else "send failed",
            )
        )
        return ok

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    def _send_with_retry(self, to_email: str, subject: str, html_content: str, sender: str):
        params = {
            "from": sender,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }
        return resend.Emails.send(params)

    def _log_attempt(self, entry: EmailLog) -> None:
        if self._log_client is None:
            return
        try:
            self._log_client.table("email_logs").insert(
                entry.model_dump(exclude_none=True, exclude={"id", "created_at"})
            ).execute()
        except Exception as e:
            logger.warning("[Email] Failed to log email attempt: %s", e)
