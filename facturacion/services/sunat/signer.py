# facturacion/services/sunat/signer.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from typing import Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa, utils
from cryptography.hazmat.primitives.serialization import Encoding
from django.utils import timezone
from lxml import etree

from facturacion.services.sunat.canonical import (
    canonicalizar_arbol,
    canonicalizar_elemento,
    parse_xml,
)
from facturacion.services.sunat.certificado import KeyMaterial
from facturacion.services.sunat.exceptions import (
    CanonicalizationError,
    SigningError,
    VerificationError,
)
from facturacion.services.sunat.ubl import NS_CAC, NS_CBC, NS_DS, NS_EXT
from facturacion.services.sunat.xml_builder import SIGNATURE_ID

logger = logging.getLogger("facturacion.sunat")

ALG_C14N = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
ALG_RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
ALG_SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"
ALG_ENVELOPED = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"

KEY_INFO_ID = f"{SIGNATURE_ID}-KeyInfo"

# Prólogo exacto que emite firmar_xml; la forma canónica no lo incluye
DECLARACION_XML = b"<?xml version='1.0' encoding='UTF-8'?>"


def _ds(tag: str) -> str:
    return f"{{{NS_DS}}}{tag}"


def _ext(tag: str) -> str:
    return f"{{{NS_EXT}}}{tag}"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(text: Optional[str], campo: str) -> bytes:
    compact = "".join((text or "").split())
    if not compact:
        raise VerificationError(f"{campo} vacío en la firma")
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise VerificationError(f"{campo} no es base64 válido") from exc


def _asegurar_placeholder(root: etree._Element) -> etree._Element:
    """
    Devuelve ext:ExtensionContent, creando ext:UBLExtensions/ext:UBLExtension
    como primer hijo del raíz si el conversor no lo dejó.
    """
    content = root.find(f"{_ext('UBLExtensions')}/{_ext('UBLExtension')}/{_ext('ExtensionContent')}")
    if content is not None:
        if content.find(_ds("Signature")) is not None:
            raise SigningError("El documento ya contiene una firma digital")
        return content

    extensions = root.find(_ext("UBLExtensions"))
    if extensions is None:
        extensions = etree.Element(_ext("UBLExtensions"), nsmap={"ext": NS_EXT})
        root.insert(0, extensions)
    extension = extensions.find(_ext("UBLExtension"))
    if extension is None:
        extension = etree.SubElement(extensions, _ext("UBLExtension"))
    return etree.SubElement(extension, _ext("ExtensionContent"))


def _add_reference(
    signed_info: etree._Element,
    uri: str,
    digest_value: str,
    enveloped: bool = False,
) -> etree._Element:
    reference = etree.SubElement(signed_info, _ds("Reference"), URI=uri)
    transforms = etree.SubElement(reference, _ds("Transforms"))
    if enveloped:
        etree.SubElement(transforms, _ds("Transform"), Algorithm=ALG_ENVELOPED)
    etree.SubElement(transforms, _ds("Transform"), Algorithm=ALG_C14N)
    etree.SubElement(reference, _ds("DigestMethod"), Algorithm=ALG_SHA256)
    etree.SubElement(reference, _ds("DigestValue")).text = digest_value
    return reference


def _digest_elemento(element: etree._Element) -> str:
    return _b64(hashlib.sha256(canonicalizar_elemento(element)).digest())


def firmar_xml(xml_bytes: bytes, key_material: KeyMaterial) -> bytes:
    """
    Firma un comprobante UBL con XMLDSig enveloped (RSA-SHA256).

    Pasos:
    1. Canonicaliza el documento (con el placeholder de extensiones) y calcula SHA-256.
    2. Arma ds:KeyInfo (Id=SignatureSP-KeyInfo) con el certificado DER en base64.
    3. Arma ds:SignedInfo con dos referencias: URI="" (documento, transforms
       enveloped-signature + C14N) y URI="#SignatureSP-KeyInfo" (certificado).
    4. Canonicaliza SignedInfo, calcula su SHA-256 y lo firma con la clave RSA
       (PKCS#1 v1.5).
    5. Inserta ds:Signature (SignedInfo, SignatureValue, KeyInfo) dentro de
       ext:ExtensionContent.
    """
    if not xml_bytes:
        raise SigningError("No hay XML para firmar")
    if key_material is None:
        raise SigningError("No se proporcionó material de firma")

    private_key = key_material.private_key
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise SigningError(
            f"La clave privada debe ser RSA (recibido {type(private_key).__name__})"
        )

    try:
        root = parse_xml(xml_bytes)
    except (etree.XMLSyntaxError, CanonicalizationError) as exc:
        logger.exception("XML mal formado al intentar firmar: %s", exc)
        raise SigningError(f"XML mal formado al intentar firmar: {exc}") from exc

    try:
        extension_content = _asegurar_placeholder(root)

        # 1. Digest del documento sin firma
        documento_canonico = canonicalizar_arbol(root)
        digest_documento = _b64(hashlib.sha256(documento_canonico).digest())
        logger.debug("DigestValue del documento: %s", digest_documento)

        signature = etree.Element(_ds("Signature"), Id=SIGNATURE_ID, nsmap={"ds": NS_DS})
        signed_info = etree.SubElement(signature, _ds("SignedInfo"))
        signature_value = etree.SubElement(signature, _ds("SignatureValue"))

        # 2. KeyInfo con el certificado
        key_info = etree.SubElement(signature, _ds("KeyInfo"), Id=KEY_INFO_ID)
        x509_data = etree.SubElement(key_info, _ds("X509Data"))
        etree.SubElement(x509_data, _ds("X509Certificate")).text = _b64(
            key_material.certificate.public_bytes(Encoding.DER)
        )

        # 3. SignedInfo
        etree.SubElement(signed_info, _ds("CanonicalizationMethod"), Algorithm=ALG_C14N)
        etree.SubElement(signed_info, _ds("SignatureMethod"), Algorithm=ALG_RSA_SHA256)
        _add_reference(signed_info, "", digest_documento, enveloped=True)
        _add_reference(signed_info, f"#{KEY_INFO_ID}", _digest_elemento(key_info))

        # 4. SignatureValue
        signed_info_digest = hashlib.sha256(canonicalizar_elemento(signed_info)).digest()
        signature_bytes = private_key.sign(
            signed_info_digest,
            padding.PKCS1v15(),
            utils.Prehashed(hashes.SHA256()),
        )
        signature_value.text = _b64(signature_bytes)

        extension_content.append(signature)

        xml_firmado = etree.tostring(
            root,
            encoding="UTF-8",
            xml_declaration=True,
            pretty_print=False,
        )
    except (SigningError, CanonicalizationError):
        raise
    except Exception as exc:
        logger.exception("Error al firmar XML: %s", exc)
        raise SigningError(f"Error al firmar el XML: {exc}") from exc

    logger.info("XML firmado (RSA-SHA256) con certificado %s", key_material.subject)
    return xml_firmado


# ============================================================
# Verificación
# ============================================================


def _verificar_referencia_signature(root: etree._Element, signature: etree._Element) -> None:
    """El Id de ds:Signature debe coincidir con cac:Signature/.../cbc:URI."""
    uri = root.findtext(
        f"{{{NS_CAC}}}Signature/{{{NS_CAC}}}DigitalSignatureAttachment/"
        f"{{{NS_CAC}}}ExternalReference/{{{NS_CBC}}}URI"
    )
    if uri is None:
        return
    if uri.strip() != f"#{signature.get('Id', '')}":
        raise VerificationError(
            f"El Id de ds:Signature no coincide con la referencia {uri!r}"
        )


def _buscar_referencia(signed_info: etree._Element, uri: str) -> etree._Element:
    encontradas = [r for r in signed_info.findall(_ds("Reference")) if r.get("URI") == uri]
    if len(encontradas) != 1:
        raise VerificationError(f"ds:SignedInfo debe tener una única referencia URI={uri!r}")
    reference = encontradas[0]
    digest_method = reference.find(_ds("DigestMethod"))
    if digest_method is None or digest_method.get("Algorithm") != ALG_SHA256:
        raise VerificationError("DigestMethod no soportado")
    return reference


def _verificar_certificado(texto: Optional[str]) -> rsa.RSAPublicKey:
    """Carga el certificado embebido, revisa su vigencia y devuelve su clave RSA."""
    der = _b64decode(texto, "X509Certificate")
    try:
        cert = x509.load_der_x509_certificate(der)
        vigente_desde = cert.not_valid_before_utc
        vigente_hasta = cert.not_valid_after_utc
        public_key = cert.public_key()
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise VerificationError(f"Certificado embebido inválido: {exc}") from exc

    now = timezone.now()
    if now < vigente_desde or now > vigente_hasta:
        raise VerificationError(
            f"Certificado fuera de vigencia ({vigente_desde} - {vigente_hasta})"
        )
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise VerificationError("El certificado embebido no tiene clave RSA")
    return public_key


def validar_firma(xml_firmado: bytes) -> None:
    """
    Verifica la firma de un comprobante. Lanza VerificationError con el motivo.

    - El prólogo debe ser el que emite firmar_xml.
    - ds:KeyInfo debe estar cubierto por su referencia en SignedInfo.
    - Quita ds:Signature y recalcula el digest del documento.
    - Verifica SignatureValue sobre SignedInfo con la clave del certificado
      embebido, que además debe estar vigente.
    """
    if not xml_firmado:
        raise VerificationError("No hay XML firmado para verificar")
    if isinstance(xml_firmado, str):
        xml_firmado = xml_firmado.encode("utf-8")
    if not xml_firmado.startswith(DECLARACION_XML):
        raise VerificationError("El prólogo XML no corresponde a un documento firmado")

    try:
        root = parse_xml(xml_firmado)
    except (etree.XMLSyntaxError, CanonicalizationError) as exc:
        raise VerificationError(f"XML firmado mal formado: {exc}") from exc

    signature = root.find(f".//{_ds('Signature')}")
    if signature is None:
        raise VerificationError("El documento no contiene ds:Signature")
    signed_info = signature.find(_ds("SignedInfo"))
    if signed_info is None:
        raise VerificationError("ds:Signature no contiene ds:SignedInfo")

    method = signed_info.find(_ds("SignatureMethod"))
    if method is None or method.get("Algorithm") != ALG_RSA_SHA256:
        raise VerificationError("SignatureMethod no soportado")

    referencia_documento = _buscar_referencia(signed_info, "")
    key_info = signature.find(_ds("KeyInfo"))
    if key_info is None or not key_info.get("Id"):
        raise VerificationError("ds:KeyInfo ausente o sin Id")
    referencia_key_info = _buscar_referencia(signed_info, f"#{key_info.get('Id')}")

    digest_key_info = (referencia_key_info.findtext(_ds("DigestValue")) or "").strip()
    if _digest_elemento(key_info) != digest_key_info:
        raise VerificationError("DigestValue de ds:KeyInfo no coincide: el certificado fue modificado")

    digest_esperado = (referencia_documento.findtext(_ds("DigestValue")) or "").strip()
    signature_value = _b64decode(signature.findtext(_ds("SignatureValue")), "SignatureValue")
    public_key = _verificar_certificado(
        key_info.findtext(f"{_ds('X509Data')}/{_ds('X509Certificate')}")
    )

    _verificar_referencia_signature(root, signature)

    signed_info_digest = hashlib.sha256(canonicalizar_elemento(signed_info)).digest()

    # Transform enveloped-signature: el documento sin su firma
    signature.getparent().remove(signature)
    digest_actual = _b64(hashlib.sha256(canonicalizar_arbol(root)).digest())
    if digest_actual != digest_esperado:
        raise VerificationError("DigestValue no coincide: el documento fue modificado")

    try:
        public_key.verify(
            signature_value,
            signed_info_digest,
            padding.PKCS1v15(),
            utils.Prehashed(hashes.SHA256()),
        )
    except InvalidSignature as exc:
        raise VerificationError("SignatureValue inválido para SignedInfo") from exc


def verificar_firma(xml_firmado: bytes) -> bool:
    """True si la firma es válida; False ante cualquier alteración."""
    try:
        validar_firma(xml_firmado)
    except (VerificationError, CanonicalizationError) as exc:
        logger.warning("Verificación de firma fallida: %s", exc)
        return False
    return True
