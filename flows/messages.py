"""User-facing texts and formatters for the WhatsApp conversation (Spanish)."""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from models.schemas import CaseRecord, ProcessDetail, as_utc

# ──────────────────────────────────────────────────────────────
#  Static texts
# ──────────────────────────────────────────────────────────────

WELCOME = (
    "👋 ¡Hola! Bienvenido/a a ELENA – QPAlliance, tu asistente legal virtual.\n\n"
    "Antes de continuar, cuéntame:"
)

CONSENT = (
    "Antes de continuar, queremos contarte que de conformidad con la Ley 1581 de 2012 "
    "y demás normas aplicables en Colombia, los datos personales que suministres a través "
    "de este canal serán recolectados, almacenados y tratados por QPAlliance, con la "
    "finalidad de prestar asesoría jurídica, gestionar procesos legales, enviarte "
    "notificaciones sobre el estado de tus trámites y facilitar la comunicación contigo. "
    "Tus datos serán manejados de manera confidencial y segura, y no serán compartidos con "
    "terceros sin tu autorización expresa, salvo en los casos previstos por la ley. Como "
    "titular de la información, tienes derecho a conocer, actualizar, rectificar y "
    "solicitar la supresión de tus datos en cualquier momento.\n\n"
    "¿Aceptas el tratamiento de tus datos personales conforme a nuestra política de privacidad?\n"
    "👉 Responde:\n1️⃣ Sí, acepto\n2️⃣ No acepto"
)
CONSENT_ACCEPTED = (
    "✅ ¡Perfecto! Gracias por aceptar nuestra política de privacidad.\n\n"
    "Ahora continuemos con tu solicitud..."
)
CONSENT_REJECTED = (
    "Gracias por tu respuesta, en esta ocasión no podemos seguir adelante con tu solicitud "
    "debido a que no hay aceptación del tratamiento de datos personales.\n\n"
    "Si cambias de opinión en el futuro, puedes contactarnos nuevamente.\n\n"
    "¡Que tengas un excelente día! 👋"
)
INVALID_CONSENT = "❌ Opción inválida. Por favor, responde con 1, 2, sí, no, acepto o no acepto."

DOCUMENT_TYPE_HEADER = (
    "Con gusto. Para consultar, por favor indícame el tipo de documento de "
    "identificación con el que cuentas:"
)
DOCUMENT_NUMBER_PROMPT = "Envía tu número de identificación:"
INVALID_DOCUMENT_NUMBER = "❌ Por favor, envía un número de identificación válido (6-15 dígitos)."
LOOKUP_STARTED = "🔎 Gracias. Un momento mientras verifico…"
CONNECTION_ERROR = "❌ Error de conexión con la API. Por favor, intenta nuevamente."
INVALID_RESPONSE = "❌ Error en la respuesta de la API. Por favor, intenta nuevamente."
NO_PROCESSES_LOADED = "❌ No se encontraron procesos. Por favor, envía tu número de identificación nuevamente."

DETAILS_LOADING = "🔍 Obteniendo detalles del proceso..."
PDF_QUESTION = "¿Quieres recibir el PDF de este proceso?"
PDF_DECLINED = "Entendido. No se generará el PDF."
INVALID_YES_NO = '❌ Por favor, responde con "sí" para recibir el PDF o "no" para cancelar.'
PICK_FROM_LIST = "Por favor, responde con el número de la lista del proceso que quieres consultar."

REPORT_STARTED = "📄 Generando el resumen completo de todos tus procesos..."
SINGLE_REPORT_STARTED = "📄 Generando el reporte personalizado..."
REPORT_CAPTION = (
    "📄 Aquí tienes el resumen completo de tus procesos.\n\n"
    "Si tienes alguna pregunta, no dudes en escribirnos."
)
REPORT_NEXT_HEADER = "¿Qué te gustaría hacer ahora?"
REPORT_ERROR_HEADER = "❌ Lo siento, hubo un error generando el resumen.\n¿Qué te gustaría hacer?"
REPORT_RETRYING = "🔄 Perfecto, intentemos generar el resumen nuevamente..."
NO_DOCUMENT = "❌ No se encontró el número de documento. Por favor, intenta nuevamente."

MAIN_OPTIONS_HEADER = "💡 *¿Qué deseas hacer?*"
OTHER_PROCESS_TYPE_HEADER = (
    "¡Perfecto! Te ayudo a consultar otro tipo de procesos.\n\n"
    "¿Qué tipo de procesos quieres consultar?"
)
NEW_PROCESS_STARTING = "🎉 ¡Excelente! Te ayudo a iniciar un nuevo proceso..."
NEW_PROCESS_FROM_FINALIZED = "✅ Perfecto, te ayudo a iniciar un nuevo proceso legal."
NEW_PROCESS_HEADER = (
    "¡Excelente noticia! 🎉\n\nQueremos acompañarte en este camino legal y asegurarnos "
    "de que recibas la mejor orientación.\n\nPara comenzar, dime por favor:"
)
RAPPITENDERO_WELCOME = "\n".join([
    "🙌 ¡Excelente! Estamos listos para acompañarte durante todo el proceso y brindarte "
    "el respaldo legal que necesitas.",
    "",
    "👉 Para conocerte mejor y ofrecerte la mejor atención, te enviaré un formulario rápido "
    "que debes diligenciar y un video que te explicará a detalle en qué va a consistir tu caso.",
    "",
    "📋 Formulario:",
    "https://docs.google.com/forms/d/e/1FAIpQLScrONKT_avUatwpKU2Lh5iUn6FOEkVgrJkDwmvuaKj1AfM1Ng/viewform",
])
COMPANY_WELCOME = (
    "🏢 Gracias por confiar en nosotros.\n\n"
    "Para darte un servicio ajustado a tu caso, te contactaremos con un asesor."
)
OTHER_PROFILE_WELCOME = (
    "Perfecto 🙌.\n\nQueremos conocer mejor tu perfil y tu caso para ofrecerte la mejor "
    "asesoría.\n\nPara darte un servicio ajustado a tu caso, te contactaremos con un asesor."
)

LAWYER_HANDOFF = (
    "👨‍💼 Perfecto, te conecto con uno de nuestros abogados especializados.\n\n"
    "Un abogado se pondrá en contacto contigo en las próximas 24 horas para resolver tus dudas."
)
LAWYER_HANDOFF_FINALIZED = (
    "👨‍💼 Para darte un servicio ajustado a tu caso, te contactaremos con uno de nuestros abogados."
)

RESTARTING = "🔄 Volviendo al menú principal..."
SESSION_EXPIRED = "⏱️ Tu conversación anterior expiró por inactividad. Empecemos de nuevo."
GOODBYE = "¡Gracias por usar ELENA - QPAlliance! 👋"
UNEXPECTED_ERROR = "❌ Lo siento, ocurrió un error inesperado. Escribe cualquier mensaje para empezar de nuevo."


def invalid_option(option_count: int) -> str:
    choices = ", ".join(str(i) for i in range(1, option_count + 1))
    return f"❌ Opción no válida. Por favor, responde con {choices}."


def invalid_process_number(count: int) -> str:
    plural = "s" if count > 1 else ""
    return (
        f"❌ Número inválido. Solo hay {count} proceso{plural} disponible{plural}. "
        "Por favor, elige un número de la lista."
    )


def no_processes_found(document_number: str) -> str:
    return f"❌ No se encontraron procesos para el documento {document_number}"


def process_not_found(code: str) -> str:
    return (
        f"❌ No se encontró el proceso {code}.\n"
        "Por favor, verifica el código del proceso e intenta nuevamente."
    )


def processes_found(document_number: str, total_active: int, total_finalized: int) -> str:
    total = total_active + total_finalized
    return (
        f"✅ Encontré {total} proceso(s) ({total_active} activo(s) / {total_finalized} "
        f"finalizado(s)) asociado(s) a tu identificación {document_number}. Elige una opción:"
    )


# ──────────────────────────────────────────────────────────────
#  Formatters
# ──────────────────────────────────────────────────────────────

def format_date(value: Optional[datetime], tz: str = "America/Bogota") -> str:
    if value is None:
        return ""
    return as_utc(value).astimezone(ZoneInfo(tz)).strftime("%d/%m/%Y")


def format_process_list(records: list[CaseRecord], kind: str) -> str:
    label, emoji = ("activos", "📂") if kind == "active" else ("finalizados", "📋")
    blocks = []
    for i, record in enumerate(records, start=1):
        lines = [f"{i}. Proceso #{record.internal_code}", f"   • Estado: {record.state}"]
        if record.updated_at:
            lines.append(f"   • Última actualización: {format_date(record.updated_at)}")
        blocks.append("\n".join(lines))
    return f"{emoji} Procesos {label}:\n\n" + "\n\n".join(blocks)


def active_list_hint(count: int, has_finalized: bool) -> str:
    lines = [
        "💡 *Opciones disponibles:*",
        "",
        f"• Escribe el *número del proceso* (1-{count}) para ver sus detalles",
    ]
    if has_finalized:
        lines.append("• Escribe *FINALIZADOS* para ver procesos finalizados")
    lines.append("• Escribe *PDF* para recibir un resumen completo")
    lines.append("• Escribe *MENU* para volver al inicio")
    return "\n".join(lines)


def finalized_summary(records: list[CaseRecord], document_number: str) -> str:
    n = len(records)
    plural = "s" if n > 1 else ""
    header = (
        f"✅ Encontré {n} proceso{plural} finalizado{plural} asociados al documento "
        f"{document_number}:\n\n"
    )
    lines = [
        f"{i}. Proceso #{r.internal_code} • Estado: {r.state}"
        for i, r in enumerate(records, start=1)
    ]
    return header + "\n".join(lines)


def format_process_details(detail: ProcessDetail) -> str:
    lines = [
        f"📄 #{detail.internal_code}",
        f"• Estado: {detail.status}",
        f"• Responsable: {detail.responsible}",
        f"• Próximo hito: {detail.next_milestone}",
        f"• Jurisdicción: {detail.jurisdiction}",
        f"• Tipo: {detail.process_type}",
    ]
    if detail.plaintiffs:
        lines.append(f"• Demandantes: {', '.join(detail.plaintiffs)}")
    if detail.defendants:
        lines.append(f"• Demandados: {', '.join(detail.defendants)}")
    if detail.settled and detail.settled != "NO":
        lines.append(f"• Estado del proceso: {detail.settled}")
    dated = [p for p in detail.performances if p.updated_at]
    if dated:
        last = max(dated, key=lambda p: as_utc(p.updated_at))
        lines.append(f"• Última actualización: {format_date(last.updated_at)}")
    if detail.performances:
        lines.append(f"• Total de actuaciones: {len(detail.performances)}")
    return "\n".join(lines)


# ──────────────────────────────────────────────────────────────
#  Lawyer notifications
# ──────────────────────────────────────────────────────────────

def _local_timestamp(tz: str) -> str:
    return datetime.now(ZoneInfo(tz)).strftime("%d/%m/%Y, %H:%M:%S")


def lawyer_new_process_message(
    client_number: str, client_name: str, profile: str, request_type: str,
    tz: str = "America/Bogota",
) -> str:
    return (
        f"🏢 NUEVA SOLICITUD {profile.upper()}\n\n"
        f"👤 Cliente: {client_name or 'Sin nombre'}\n"
        f"📱 WhatsApp: {client_number}\n"
        f"🕐 Fecha: {_local_timestamp(tz)}\n"
        f"📋 Perfil: {profile}\n"
        f"🎯 Solicitud: {request_type}\n\n"
        "El cliente ha solicitado iniciar un proceso legal y necesita asesoría especializada "
        f"para {profile.lower()}. Por favor, contáctalo directamente para brindarle el "
        "servicio personalizado que requiere.\n\n¡Gracias! 🙌"
    )


def lawyer_existing_process_message(
    client_number: str, client_name: str, document_number: str, request_type: str,
    tz: str = "America/Bogota",
) -> str:
    return (
        "📋 CONSULTA SOBRE PROCESOS EXISTENTES\n\n"
        f"👤 Cliente: {client_name or 'Sin nombre'}\n"
        f"📱 WhatsApp: {client_number}\n"
        f"🆔 Documento: {document_number}\n"
        f"🕐 Fecha: {_local_timestamp(tz)}\n"
        f"🎯 Consulta: {request_type}\n\n"
        "El cliente tiene procesos registrados y requiere hablar con un abogado para recibir "
        "asesoría especializada. Por favor, contáctalo directamente para brindarle la "
        "atención personalizada que necesita.\n\n¡Gracias! 🙌"
    )
