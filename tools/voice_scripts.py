"""
Voice Script Tool
Localized text for reminder calls and the replies played after a keypress
"""

import logging
from typing import Dict, Optional
from datetime import datetime

from config import reminder_config


logger = logging.getLogger(__name__)


GREETINGS: Dict[str, Dict[str, str]] = {
    "en": {"morning": "good morning", "afternoon": "good afternoon", "evening": "good evening"},
    "hi": {"morning": "सुप्रभात", "afternoon": "नमस्कार", "evening": "शुभ संध्या"},
    "es": {"morning": "buenos días", "afternoon": "buenas tardes", "evening": "buenas noches"},
    "fr": {"morning": "bonjour", "afternoon": "bon après-midi", "evening": "bonsoir"},
}

REMINDER_SCRIPTS: Dict[str, str] = {
    "en": (
        "Hello {patient_name}, {greeting}. This is your medication reminder service. "
        "It's time to take your {medication}, {dosage}. {instructions}"
        "Please take your medication now and confirm by pressing 1 on your phone."
    ),
    "hi": (
        "नमस्ते {patient_name}, {greeting}. यह आपकी दवा याद दिलाने की सेवा है। "
        "अब {medication}, {dosage} लेने का समय है। {instructions}"
        "कृपया अपनी दवा लें और फोन पर 1 दबाकर पुष्टि करें।"
    ),
    "es": (
        "Hola {patient_name}, {greeting}. Este es su servicio de recordatorio de medicamentos. "
        "Es hora de tomar su {medication}, {dosage}. {instructions}"
        "Por favor tome su medicamento ahora y confirme presionando 1 en su teléfono."
    ),
    "fr": (
        "Bonjour {patient_name}, {greeting}. Ceci est votre service de rappel de médicaments. "
        "Il est temps de prendre votre {medication}, {dosage}. {instructions}"
        "Veuillez prendre votre médicament maintenant et confirmer en appuyant sur 1 sur votre téléphone."
    ),
}

GATHER_PROMPTS: Dict[str, str] = {
    "en": "Press 1 if you have taken your {medication}, or press 2 if you need more time.",
    "hi": "यदि आपने अपनी {medication} ले ली है तो 1 दबाएं, या अधिक समय चाहिए तो 2 दबाएं।",
    "es": "Presione 1 si ya tomó su {medication}, o presione 2 si necesita más tiempo.",
    "fr": "Appuyez sur 1 si vous avez pris votre {medication}, ou sur 2 si vous avez besoin de plus de temps.",
}

NO_INPUT_MESSAGES: Dict[str, str] = {
    "en": "We didn't receive your response. A family member will be notified. Please take your medication as prescribed.",
    "hi": "हमें आपका उत्तर नहीं मिला। परिवार के सदस्य को सूचित किया जाएगा। कृपया निर्धारित अनुसार अपनी दवा लें।",
    "es": "No recibimos su respuesta. Se notificará a un familiar. Por favor tome su medicamento según lo indicado.",
    "fr": "Nous n'avons pas reçu votre réponse. Un membre de la famille sera prévenu. Veuillez prendre votre médicament comme prescrit.",
}

CONFIRMATION_SCRIPTS: Dict[str, Dict[bool, str]] = {
    "en": {
        True: "Thank you for confirming that you've taken your {medication}. Have a great day!",
        False: "I understand you need more time. Please take your {medication} as soon as possible. "
               "We will call you again shortly.",
    },
    "hi": {
        True: "{medication} लेने की पुष्टि के लिए धन्यवाद। आपका दिन शुभ हो!",
        False: "मैं समझता हूं कि आपको और समय चाहिए। कृपया जल्द से जल्द अपनी {medication} लें। "
               "हम आपको थोड़ी देर में फिर से कॉल करेंगे।",
    },
    "es": {
        True: "Gracias por confirmar que ha tomado su {medication}. ¡Que tenga un buen día!",
        False: "Entiendo que necesita más tiempo. Por favor tome su {medication} tan pronto como sea posible. "
               "Le volveremos a llamar en breve.",
    },
    "fr": {
        True: "Merci de confirmer que vous avez pris votre {medication}. Passez une excellente journée!",
        False: "Je comprends que vous avez besoin de plus de temps. Veuillez prendre votre {medication} dès que possible. "
               "Nous vous rappellerons bientôt.",
    },
}

UNRECOGNIZED_INPUT: Dict[str, str] = {
    "en": "Sorry, we did not understand that key. Please take your medication as prescribed.",
    "hi": "क्षमा करें, हम वह बटन नहीं समझ पाए। कृपया निर्धारित अनुसार अपनी दवा लें।",
    "es": "Lo sentimos, no entendimos esa tecla. Por favor tome su medicamento según lo indicado.",
    "fr": "Désolé, nous n'avons pas compris cette touche. Veuillez prendre votre médicament comme prescrit.",
}


def _language(locale: Optional[str]) -> str:
    if locale in reminder_config.SUPPORTED_LANGUAGES:
        return locale
    return reminder_config.DEFAULT_LANGUAGE


def _time_of_day(now: Optional[datetime] = None) -> str:
    hour = (now or datetime.now()).hour
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    return "evening"


def render_script(
    medication,
    locale: Optional[str],
    patient_name: str,
    now: Optional[datetime] = None
) -> str:
    """
    Personalized reminder script read out when the patient answers

    Args:
        medication: object with name, dosage and optional instructions
        locale: patient's preferred language; unknown values fall back to English
        patient_name: first name used in the greeting
        now: patient's local time, used to pick the greeting
    """
    language = _language(locale)
    instructions = getattr(medication, "instructions", None)
    return REMINDER_SCRIPTS[language].format(
        patient_name=patient_name,
        greeting=GREETINGS[language][_time_of_day(now)],
        medication=medication.name,
        dosage=medication.dosage,
        instructions=f"{instructions.rstrip('.')}. " if instructions else "",
    )


def render_gather_prompt(locale: Optional[str], medication_name: str) -> str:
    return GATHER_PROMPTS[_language(locale)].format(medication=medication_name)


def render_no_input(locale: Optional[str]) -> str:
    return NO_INPUT_MESSAGES[_language(locale)]


def render_confirmation(locale: Optional[str], medication_name: str, confirmed: bool) -> str:
    """Reply to digit 1 (confirmed) or digit 2 (needs more time)"""
    return CONFIRMATION_SCRIPTS[_language(locale)][bool(confirmed)].format(medication=medication_name)


def render_unrecognized(locale: Optional[str]) -> str:
    return UNRECOGNIZED_INPUT[_language(locale)]
