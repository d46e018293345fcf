# facturacion/services/sunat/client.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import threading
import time
from typing import Dict, Optional, Tuple

import requests
from lxml import etree
from zeep.wsse.username import UsernameToken

from facturacion.services.sunat.config import SunatConfig
from facturacion.services.sunat.documento import EstadoProceso
from facturacion.services.sunat.exceptions import SubmissionCancelled, TransportError
from facturacion.services.sunat.packager import PaqueteFirmado, validar_paquete
from facturacion.services.sunat.responses import (
    ResultadoCdr,
    ResultadoEnvio,
    ResultadoEstado,
    procesar_respuesta_cdr,
    procesar_respuesta_envio,
    procesar_respuesta_estado,
)

logger = logging.getLogger("facturacion.sunat")

NS_SOAP_ENV = "http://schemas.xmlsoap.org/soap/envelope/"
NS_SER = "http://service.sunat.gob.pe"

OPERACION_SEND_BILL = "sendBill"
OPERACION_GET_STATUS = "getStatus"
OPERACION_GET_STATUS_CDR = "getStatusCdr"

TICKET_SIMULACION = "123456789"
CDR_SIMULACION = b"ACEPTADO"
MENSAJE_SIMULACION = "Documento aceptado por SUNAT (SIMULACIÓN)"


def construir_envelope(
    operacion: str,
    parametros: Dict[str, str],
    usuario: str,
    password: str,
) -> bytes:
    """
    Arma el sobre SOAP 1.1 para una operación del billService.

    El header WS-Security (UsernameToken en texto plano) lo agrega zeep sobre
    el árbol lxml; el body lleva ``ser:{operacion}`` con sus parámetros en orden.
    """
    envelope = etree.Element(
        f"{{{NS_SOAP_ENV}}}Envelope",
        nsmap={"soapenv": NS_SOAP_ENV, "ser": NS_SER},
    )
    etree.SubElement(envelope, f"{{{NS_SOAP_ENV}}}Header")
    body = etree.SubElement(envelope, f"{{{NS_SOAP_ENV}}}Body")
    nodo_operacion = etree.SubElement(body, f"{{{NS_SER}}}{operacion}")
    for nombre, valor in parametros.items():
        # Los parámetros del billService no llevan namespace
        etree.SubElement(nodo_operacion, nombre).text = valor

    envelope, _headers = UsernameToken(usuario, password).apply(envelope, {})
    return etree.tostring(envelope, encoding="UTF-8", xml_declaration=True)


class SunatClient:
    """
    Cliente SOAP para el billService de SUNAT:

    - sendBill(fileName, contentFile)
    - getStatus(ticket)
    - getStatusCdr(rucComprobante, tipoComprobante, serieComprobante, numeroComprobante)

    Los reintentos se hacen aquí (no en el adapter HTTP) para poder cortarlos con
    ``cancelacion`` o con un ``deadline`` absoluto (``time.monotonic()``).
    """

    def __init__(
        self,
        config: SunatConfig,
        session: Optional[requests.Session] = None,
        cancelacion: Optional[threading.Event] = None,
    ):
        self.config = config
        self.cancelacion = cancelacion or threading.Event()

        if session is None:
            session = requests.Session()
            session.verify = config.ssl_verify
            session.headers.update({"User-Agent": "FacturacionSUNAT/1.0 (Python/requests)"})
        self.session = session

        logger.info(
            "Inicializando SunatClient ambiente=%s endpoint=%s simulacion=%s "
            "[timeout=%s, reintentos=%s, retry_delay=%s, verify_ssl=%s]",
            config.ambiente,
            config.endpoint,
            config.modo_simulacion,
            config.timeout,
            config.max_reintentos,
            config.retry_delay,
            config.ssl_verify,
        )

    # -------------------------
    # Transporte con reintentos
    # -------------------------

    def _esperar(self, segundos: float, deadline: Optional[float]) -> None:
        if deadline is not None:
            restante = deadline - time.monotonic()
            if restante <= segundos:
                raise TransportError(
                    "Se agotó el plazo máximo antes del siguiente reintento a SUNAT"
                )
        if self.cancelacion.wait(segundos):
            raise SubmissionCancelled("Envío a SUNAT cancelado durante la espera de reintento")

    def _post(
        self,
        url: str,
        operacion: str,
        envelope: bytes,
        deadline: Optional[float] = None,
    ) -> Tuple[int, bytes]:
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": f"urn:{operacion}",
        }
        intentos = self.config.max_reintentos + 1
        ultimo_error: Optional[Exception] = None

        for intento in range(1, intentos + 1):
            if self.cancelacion.is_set():
                raise SubmissionCancelled(f"{operacion}: envío cancelado antes del intento {intento}")

            try:
                response = self.session.post(
                    url,
                    data=envelope,
                    headers=headers,
                    timeout=self.config.timeout,
                    verify=self.config.ssl_verify,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                ultimo_error = exc
                logger.warning(
                    "Error de red/timeout en %s (intento %s/%s): %s",
                    operacion,
                    intento,
                    intentos,
                    exc,
                )
                if intento < intentos:
                    self._esperar(self.config.retry_delay * intento, deadline)
                continue
            except requests.RequestException as exc:
                logger.exception("Error HTTP no recuperable en %s: %s", operacion, exc)
                raise TransportError(f"{operacion}: error en la solicitud HTTP ({exc})") from exc

            logger.info(
                "Respuesta %s HTTP %s (%s bytes, intento %s)",
                operacion,
                response.status_code,
                len(response.content or b""),
                intento,
            )
            return response.status_code, response.content

        raise TransportError(
            f"{operacion}: no fue posible conectarse con SUNAT tras {intentos} intentos "
            f"({ultimo_error})"
        ) from ultimo_error

    # -------------------------
    # sendBill
    # -------------------------

    def enviar_comprobante(
        self, paquete: PaqueteFirmado, deadline: Optional[float] = None
    ) -> ResultadoEnvio:
        """
        Envía el ZIP firmado (base64) con sendBill y devuelve el resultado ya
        interpretado. En modo simulación no se hace ninguna llamada de red.
        """
        validar_paquete(paquete)

        if self.config.modo_simulacion:
            logger.warning(
                "Modo simulación activo: %s no se envía a SUNAT", paquete.nombre_zip
            )
            return ResultadoEnvio(
                exito=True,
                http_status=200,
                ticket=TICKET_SIMULACION,
                cdr=CDR_SIMULACION,
                mensaje=MENSAJE_SIMULACION,
                estado=EstadoProceso.ACEPTADO,
                codigo_respuesta="0",
                simulado=True,
            )

        envelope = construir_envelope(
            OPERACION_SEND_BILL,
            {"fileName": paquete.nombre_zip, "contentFile": paquete.contenido_base64},
            self.config.usuario,
            self.config.password,
        )
        logger.info("Enviando %s a %s", paquete.nombre_zip, self.config.endpoint)
        status, body = self._post(self.config.endpoint, OPERACION_SEND_BILL, envelope, deadline)
        return procesar_respuesta_envio(status, body)

    # -------------------------
    # getStatus
    # -------------------------

    def consultar_ticket(self, ticket: str, deadline: Optional[float] = None) -> ResultadoEstado:
        if self.config.modo_simulacion:
            logger.warning("Modo simulación activo: consulta de ticket %s simulada", ticket)
            return ResultadoEstado(
                http_status=200,
                status_code="0",
                cdr=CDR_SIMULACION,
                mensaje=MENSAJE_SIMULACION,
                estado=EstadoProceso.ACEPTADO,
                codigo_respuesta="0",
                simulado=True,
            )

        envelope = construir_envelope(
            OPERACION_GET_STATUS,
            {"ticket": ticket},
            self.config.usuario,
            self.config.password,
        )
        status, body = self._post(self.config.endpoint, OPERACION_GET_STATUS, envelope, deadline)
        return procesar_respuesta_estado(status, body)

    # -------------------------
    # getStatusCdr
    # -------------------------

    def consultar_cdr(
        self,
        ruc: str,
        tipo: str,
        serie: str,
        numero: str,
        deadline: Optional[float] = None,
    ) -> ResultadoCdr:
        if self.config.modo_simulacion:
            logger.warning(
                "Modo simulación activo: consulta CDR %s-%s-%s-%s simulada", ruc, tipo, serie, numero
            )
            return ResultadoCdr(
                http_status=200,
                status_code="0004",
                cdr=CDR_SIMULACION,
                mensaje=MENSAJE_SIMULACION,
                estado=EstadoProceso.ACEPTADO,
                codigo_respuesta="0",
                simulado=True,
            )

        envelope = construir_envelope(
            OPERACION_GET_STATUS_CDR,
            {
                "rucComprobante": ruc,
                "tipoComprobante": tipo,
                "serieComprobante": serie,
                "numeroComprobante": str(numero),
            },
            self.config.usuario,
            self.config.password,
        )
        status, body = self._post(
            self.config.consulta_cdr_url, OPERACION_GET_STATUS_CDR, envelope, deadline
        )
        return procesar_respuesta_cdr(status, body)
