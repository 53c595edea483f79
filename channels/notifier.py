"""
Lawyer escalation — builds the WhatsApp notices sent to the firm's lawyers
when a client asks for a human. The notices are ordinary outbound messages
addressed to the configured numbers, so they go out after the session write
like every other reply.
"""
from __future__ import annotations

import structlog

from config.settings import LawyerConfig, get_settings
from flows import messages
from models.schemas import OutboundMessage

logger = structlog.get_logger()


class LawyerNotifier:

    def __init__(self, config: LawyerConfig = None):
        self.config = config or get_settings().lawyers

    def new_process(
        self, client_number: str, client_name: str, profile: str, request_type: str,
    ) -> list[OutboundMessage]:
        number = self.config.new_process_number
        if not number:
            logger.warning("lawyer_number_not_configured", kind="new_process", client=client_number)
            return []
        body = messages.lawyer_new_process_message(
            client_number, client_name, profile, request_type, tz=self.config.timezone,
        )
        logger.info("lawyer_notified", kind="new_process", client=client_number, profile=profile)
        return [OutboundMessage(to=number, text=body)]

    def existing_process(
        self, client_number: str, client_name: str, document_number: str, request_type: str,
    ) -> list[OutboundMessage]:
        number = self.config.existing_process_number or self.config.new_process_number
        if not number:
            logger.warning("lawyer_number_not_configured", kind="existing_process", client=client_number)
            return []
        body = messages.lawyer_existing_process_message(
            client_number, client_name, document_number, request_type, tz=self.config.timezone,
        )
        logger.info("lawyer_notified", kind="existing_process", client=client_number)
        return [OutboundMessage(to=number, text=body)]
