"""Reparación de certificados CA en formato PEM.

Algunos clientes guardan el certificado en una sola línea (sin saltos).
OpenSSL no acepta ese formato, así que se reconstruye antes de usarlo.
"""

from __future__ import annotations

import re

PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
PEM_END = "-----END CERTIFICATE-----"
PEM_LINE_LENGTH = 64

_PEM_BLOCK = re.compile(
    re.escape(PEM_BEGIN) + r"(.*?)" + re.escape(PEM_END),
    re.DOTALL,
)


def needs_normalization(pem: str) -> bool:
    """True si el PEM viene en una sola línea con marcadores válidos."""
    return "\n" not in pem and PEM_BEGIN in pem and PEM_END in pem


def normalize_ca_cert(pem: str) -> str:
    """Inserta saltos de línea en un PEM guardado en una sola línea.

    - Salto después del header y antes del footer
    - Cuerpo partido en filas de 64 caracteres
    - Sin líneas vacías

    Un certificado que ya tiene saltos de línea se devuelve sin cambios.
    """
    if not needs_normalization(pem):
        return pem

    blocks = []
    for match in _PEM_BLOCK.finditer(pem):
        body = "".join(match.group(1).split())
        rows = [body[i:i + PEM_LINE_LENGTH] for i in range(0, len(body), PEM_LINE_LENGTH)]
        blocks.append("\n".join([PEM_BEGIN, *rows, PEM_END]))

    return "\n".join(blocks)


def describe_pem(pem: str) -> dict:
    """Forma del certificado para logs de diagnóstico (sin contenido)."""
    return {
        "has_line_breaks": "\n" in pem,
        "length": len(pem),
        "starts_correctly": pem.startswith(PEM_BEGIN),
        "ends_correctly": pem.endswith(PEM_END),
    }
