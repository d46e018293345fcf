# facturacion/services/sunat/config.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from django.conf import settings


SUNAT_BETA_URL_DEFAULT = "https://e-beta.sunat.gob.pe/ol-ti-itcpfegem-beta/billService"
SUNAT_PRODUCCION_URL_DEFAULT = "https://e-factura.sunat.gob.pe/ol-ti-itcpfegem/billService"
SUNAT_CONSULTA_CDR_URL_DEFAULT = (
    "https://e-factura.sunat.gob.pe/ol-it-wsconscpegem/billConsultService"
)

# Identidades de pruebas que activan el modo simulación
USUARIOS_SIMULACION = ("MODDATOS", "20103129061MODDATOS")
PASSWORD_SIMULACION = "MODDATOS"

AMBIENTE_BETA = "beta"
AMBIENTE_PRODUCCION = "produccion"


@dataclass(frozen=True)
class SunatConfig:
    """
    Configuración explícita del pipeline SUNAT.

    Se construye una vez (normalmente con ``SunatConfig.from_settings()``) y se
    pasa a cada componente. Ningún servicio lee ``settings`` por su cuenta.
    """

    usuario: str = ""
    password: str = ""
    ambiente: str = AMBIENTE_BETA
    beta_url: str = SUNAT_BETA_URL_DEFAULT
    produccion_url: str = SUNAT_PRODUCCION_URL_DEFAULT
    consulta_cdr_url: str = SUNAT_CONSULTA_CDR_URL_DEFAULT
    timeout: float = 30.0
    max_reintentos: int = 3
    retry_delay: float = 1.0
    forzar_envio_real: bool = False
    simular: bool = False
    ssl_verify: bool = True
    pausa_lote: float = 1.0
    certificado_path: Optional[str] = None
    certificado_password: Optional[str] = None

    @classmethod
    def from_settings(cls) -> "SunatConfig":
        return cls(
            usuario=getattr(settings, "SUNAT_USUARIO", "") or "",
            password=getattr(settings, "SUNAT_PASSWORD", "") or "",
            ambiente=getattr(settings, "SUNAT_AMBIENTE", AMBIENTE_BETA),
            beta_url=getattr(settings, "SUNAT_BETA_URL", SUNAT_BETA_URL_DEFAULT),
            produccion_url=getattr(
                settings, "SUNAT_PRODUCCION_URL", SUNAT_PRODUCCION_URL_DEFAULT
            ),
            consulta_cdr_url=getattr(
                settings, "SUNAT_CONSULTA_CDR_URL", SUNAT_CONSULTA_CDR_URL_DEFAULT
            ),
            timeout=float(getattr(settings, "SUNAT_TIMEOUT", 30)),
            max_reintentos=int(getattr(settings, "SUNAT_MAX_REINTENTOS", 3)),
            retry_delay=float(getattr(settings, "SUNAT_RETRY_DELAY", 1.0)),
            forzar_envio_real=bool(getattr(settings, "SUNAT_FORZAR_ENVIO_REAL", False)),
            simular=bool(getattr(settings, "SUNAT_SIMULAR", False)),
            ssl_verify=bool(getattr(settings, "SUNAT_SSL_VERIFY", True)),
            pausa_lote=float(getattr(settings, "SUNAT_LOTE_PAUSA", 1.0)),
            certificado_path=getattr(settings, "SUNAT_CERTIFICADO_PATH", None),
            certificado_password=getattr(settings, "SUNAT_CERTIFICADO_PASSWORD", None),
        )

    @property
    def endpoint(self) -> str:
        if self.ambiente == AMBIENTE_PRODUCCION:
            return self.produccion_url
        return self.beta_url

    @property
    def modo_simulacion(self) -> bool:
        if self.forzar_envio_real:
            return False
        if self.simular:
            return True
        return self.usuario in USUARIOS_SIMULACION and self.password == PASSWORD_SIMULACION
