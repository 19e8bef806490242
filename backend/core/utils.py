import re

def mask_phone(phone: str) -> str:
    """
    Masque un numéro de téléphone en ne laissant que l'indicatif (si présent)
    et les 2 derniers chiffres.
    Format type: +60 12 345 6789 -> +60 ••• •• 89
    """
    if not phone:
        return ""

    # On nettoie les espaces pour le traitement
    clean_phone = phone.replace(" ", "")

    # Si le numéro est très court, on masque tout
    if len(clean_phone) <= 4:
        return "••••"

    # Indicatif séparé par un espace si le numéro est formaté, sinon 2 chiffres (+60)
    match = re.match(r"^(\+\d{1,3})\s", phone.strip()) or re.match(r"^(\+\d{2})", clean_phone)
    prefix = match.group(1) if match else ""

    suffix = clean_phone[-2:]
    return f"{prefix} ••• •• {suffix}" if prefix else f"••• •• {suffix}"
