# facturacion/tests/utils.py
# -*- coding: utf-8 -*-
"""
Helpers compartidos por los tests: certificados de prueba, documentos de
ejemplo y respuestas SOAP/CDR de SUNAT armadas a mano.
"""
from __future__ import annotations

import base64
import copy
import io
import zipfile
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Any, Dict, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID

from facturacion.services.sunat.certificado import KeyMaterial
from facturacion.services.sunat.config import SunatConfig
from facturacion.services.sunat.documento import Documento

RUC_EMISOR = "20123456789"
RUC_RECEPTOR = "20987654321"

NS_APPLICATION_RESPONSE = "urn:oasis:names:specification:ubl:schema:xsd:ApplicationResponse-2"

_RSA_KEY: Optional[rsa.RSAPrivateKey] = None


def clave_rsa() -> rsa.RSAPrivateKey:
    """Clave RSA de 2048 bits reutilizada por todo el proceso de tests."""
    global _RSA_KEY
    if _RSA_KEY is None:
        _RSA_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return _RSA_KEY


def certificado_autofirmado(
    private_key,
    dias_validez: int = 365,
    desde: Optional[datetime] = None,
    cn: str = "EMPRESA DE PRUEBAS SAC",
) -> x509.Certificate:
    desde = desde or (datetime.now(dt_timezone.utc) - timedelta(days=1))
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "PE"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, cn),
            x509.NameAttribute(NameOID.COMMON_NAME, cn),
        ]
    )
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(desde)
        .not_valid_after(desde + timedelta(days=dias_validez))
        .sign(private_key, hashes.SHA256())
    )


def key_material_prueba() -> KeyMaterial:
    key = clave_rsa()
    return KeyMaterial(private_key=key, certificate=certificado_autofirmado(key))


def key_material_vencido() -> KeyMaterial:
    key = clave_rsa()
    desde = datetime.now(dt_timezone.utc) - timedelta(days=400)
    return KeyMaterial(
        private_key=key,
        certificate=certificado_autofirmado(key, dias_validez=30, desde=desde),
    )


def key_material_ec() -> KeyMaterial:
    key = ec.generate_private_key(ec.SECP256R1())
    return KeyMaterial(private_key=key, certificate=certificado_autofirmado(key))


def pkcs12_prueba(password: str = "secreto", material: Optional[KeyMaterial] = None) -> bytes:
    material = material or key_material_prueba()
    return pkcs12.serialize_key_and_certificates(
        b"prueba",
        material.private_key,
        material.certificate,
        None,
        BestAvailableEncryption(password.encode("utf-8")),
    )


def config_prueba(**overrides: Any) -> SunatConfig:
    """Configuración para envío real con reintentos inmediatos."""
    valores = {
        "usuario": f"{RUC_EMISOR}USUARIO1",
        "password": "clave",
        "retry_delay": 0.0,
        "max_reintentos": 2,
        "pausa_lote": 0.0,
        "timeout": 5.0,
    }
    valores.update(overrides)
    return SunatConfig(**valores)


def config_simulacion(**overrides: Any) -> SunatConfig:
    valores = {"usuario": "MODDATOS", "password": "MODDATOS", "pausa_lote": 0.0}
    valores.update(overrides)
    return SunatConfig(**valores)


# ============================================================
# Documentos de ejemplo
# ============================================================

_DATOS_FACTURA: Dict[str, Any] = {
    "tipo": "01",
    "serie": "F001",
    "numero": "1",
    "fecha_emision": "2024-05-10",
    "moneda": "PEN",
    "emisor": {
        "tipo_documento": "6",
        "numero_documento": RUC_EMISOR,
        "razon_social": "EMPRESA DE PRUEBAS SAC",
        "nombre_comercial": "PRUEBAS",
        "direccion": "AV. LOS OLIVOS 123",
        "distrito": "LIMA",
        "provincia": "LIMA",
        "departamento": "LIMA",
        "ubigeo": "150101",
    },
    "receptor": {
        "tipo_documento": "6",
        "numero_documento": RUC_RECEPTOR,
        "razon_social": "CLIENTE SAC",
        "direccion": "JR. UNION 456",
    },
    "items": [
        {
            "numero": 1,
            "codigo": "P001",
            "descripcion": "Producto gravado",
            "cantidad": "2",
            "valor_unitario": "100",
            "precio_unitario": "118",
            "tipo_afectacion": "10",
            "impuestos": [
                {"tipo_impuesto": "1000", "codigo_impuesto": "S", "tasa": "18"},
            ],
        }
    ],
}

ITEM_GRATUITO: Dict[str, Any] = {
    "numero": 2,
    "codigo": "P002",
    "descripcion": "Producto bonificado",
    "cantidad": "1",
    "valor_unitario": "100",
    "precio_unitario": "118",
    "tipo_afectacion": "11",
    "impuestos": [
        {"tipo_impuesto": "9996", "codigo_impuesto": "Z", "tasa": "18"},
    ],
}


def datos_factura(**overrides: Any) -> Dict[str, Any]:
    datos = copy.deepcopy(_DATOS_FACTURA)
    datos.update(overrides)
    return datos


def documento_factura(**overrides: Any) -> Documento:
    return Documento.from_dict(datos_factura(**overrides))


def documento_nota(tipo: str = "07", **overrides: Any) -> Documento:
    datos = datos_factura(
        tipo=tipo,
        serie="FC01" if tipo == "07" else "FD01",
        referencia={
            "tipo": "01",
            "serie_numero": "F001-1",
            "codigo_motivo": "01" if tipo == "07" else "02",
            "descripcion_motivo": "Anulación de la operación",
        },
    )
    datos.update(overrides)
    return Documento.from_dict(datos)


def crear_comprobante(**overrides: Any):
    from facturacion.models import Comprobante

    comprobante = Comprobante.desde_documento(documento_factura(**overrides))
    comprobante.save()
    return comprobante


# ============================================================
# Respuestas SUNAT
# ============================================================


def construir_cdr(
    codigo: Optional[str],
    descripcion: str,
    referencia: str = "F001-1",
    notas: tuple = (),
    comprimir: bool = True,
) -> bytes:
    notas_xml = "".join(f"<cbc:Note>{n}</cbc:Note>" for n in notas)
    codigo_xml = f"<cbc:ResponseCode>{codigo}</cbc:ResponseCode>" if codigo is not None else ""
    xml = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<ar:ApplicationResponse xmlns:ar="{NS_APPLICATION_RESPONSE}" '
        'xmlns:cac="urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2" '
        'xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2">'
        "<cbc:UBLVersionID>2.0</cbc:UBLVersionID>"
        "<cbc:ID>1715000000000</cbc:ID>"
        f"{notas_xml}"
        "<cac:DocumentResponse><cac:Response>"
        f"<cbc:ReferenceID>{referencia}</cbc:ReferenceID>"
        f"{codigo_xml}"
        f"<cbc:Description>{descripcion}</cbc:Description>"
        "</cac:Response></cac:DocumentResponse>"
        "</ar:ApplicationResponse>"
    ).encode("utf-8")
    if not comprimir:
        return xml

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("dummy/", b"")
        zf.writestr(f"R-{RUC_EMISOR}-01-{referencia}.xml", xml)
    return buffer.getvalue()


def _soap(body: str) -> bytes:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<soap-env:Envelope xmlns:soap-env="http://schemas.xmlsoap.org/soap/envelope/">'
        "<soap-env:Header/>"
        f"<soap-env:Body>{body}</soap-env:Body>"
        "</soap-env:Envelope>"
    ).encode("utf-8")


def respuesta_send_bill(cdr: Optional[bytes] = None, ticket: Optional[str] = None) -> bytes:
    contenido = ""
    if cdr is not None:
        contenido += f"<applicationResponse>{base64.b64encode(cdr).decode('ascii')}</applicationResponse>"
    if ticket is not None:
        contenido += f"<ticket>{ticket}</ticket>"
    return _soap(
        f'<br:sendBillResponse xmlns:br="http://service.sunat.gob.pe">{contenido}</br:sendBillResponse>'
    )


def respuesta_get_status(status_code: str, cdr: Optional[bytes] = None) -> bytes:
    contenido = f"<statusCode>{status_code}</statusCode>"
    if cdr is not None:
        contenido = f"<content>{base64.b64encode(cdr).decode('ascii')}</content>" + contenido
    return _soap(
        '<br:getStatusResponse xmlns:br="http://service.sunat.gob.pe">'
        f"<status>{contenido}</status>"
        "</br:getStatusResponse>"
    )


def respuesta_get_status_cdr(
    status_code: str, status_message: str, cdr: Optional[bytes] = None
) -> bytes:
    contenido = ""
    if cdr is not None:
        contenido = f"<content>{base64.b64encode(cdr).decode('ascii')}</content>"
    return _soap(
        '<br:getStatusCdrResponse xmlns:br="http://service.sunat.gob.pe">'
        f"<statusCdr>{contenido}<statusCode>{status_code}</statusCode>"
        f"<statusMessage>{status_message}</statusMessage></statusCdr>"
        "</br:getStatusCdrResponse>"
    )


def respuesta_fault(faultcode: str, faultstring: str) -> bytes:
    return _soap(
        "<soap-env:Fault>"
        f"<faultcode>{faultcode}</faultcode>"
        f"<faultstring>{faultstring}</faultstring>"
        "</soap-env:Fault>"
    )
