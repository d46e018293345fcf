# facturacion/services/sunat/xml_builder.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from lxml import etree

from facturacion.services.sunat.converter import convertir_a_ubl
from facturacion.services.sunat.documento import Documento
from facturacion.services.sunat.exceptions import SerializationError
from facturacion.services.sunat.totals import calcular_totales
from facturacion.services.sunat.ubl import (
    LIST_AGENCY_SUNAT,
    LIST_NAME_TIPO_DOCUMENTO,
    LIST_URI_CATALOGO01,
    NS_CAC,
    NS_CBC,
    NS_DS,
    NS_EXT,
    SCHEME_AGENCY_SUNAT,
    SCHEME_ID_TRIBUTOS,
    SCHEME_NAME_TRIBUTOS,
    DireccionUBL,
    DocumentoUBL,
    LineaUBL,
    ParteUBL,
    TotalImpuestoUBL,
)

logger = logging.getLogger("facturacion.sunat")

# ID de la firma referenciado desde cac:Signature y usado por ds:Signature
SIGNATURE_ID = "SignatureSP"

TIPO_OPERACION_VENTA_INTERNA = "0101"
UNECE_AGENCY = "United Nations Economic Commission for Europe"


def _format_decimal(value: Decimal | int | None, decimales: int = 2) -> str:
    """
    Formatea un monto con la cantidad de decimales indicada.

    - montos: 2 decimales
    - cantidades: hasta 10 decimales (se usan 3 por defecto en las líneas)

    None se trata como 0.
    """
    if value is None:
        value = Decimal("0")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    exponente = Decimal(1).scaleb(-decimales)
    return f"{value.quantize(exponente):.{decimales}f}"


def _format_fecha(fecha: date) -> str:
    if fecha is None:
        raise SerializationError("Fecha requerida ausente al construir el XML")
    return fecha.strftime("%Y-%m-%d")


def _cbc(parent: etree._Element, tag: str, text: Optional[str] = None, **attrs: str) -> etree._Element:
    elem = etree.SubElement(parent, f"{{{NS_CBC}}}{tag}", **attrs)
    if text is not None:
        elem.text = text
    return elem


def _cac(parent: etree._Element, tag: str) -> etree._Element:
    return etree.SubElement(parent, f"{{{NS_CAC}}}{tag}")


def _amount(parent: etree._Element, tag: str, value: Decimal, moneda: str) -> etree._Element:
    return _cbc(parent, tag, _format_decimal(value), currencyID=moneda)


# ============================================================
# Bloques
# ============================================================


def _build_extensions(root: etree._Element) -> None:
    """Placeholder ext:UBLExtensions/ext:UBLExtension/ext:ExtensionContent (se llena al firmar)."""
    extensions = etree.SubElement(root, f"{{{NS_EXT}}}UBLExtensions")
    extension = etree.SubElement(extensions, f"{{{NS_EXT}}}UBLExtension")
    etree.SubElement(extension, f"{{{NS_EXT}}}ExtensionContent")


def _build_signature_reference(root: etree._Element, doc: DocumentoUBL) -> None:
    signature = _cac(root, "Signature")
    _cbc(signature, "ID", SIGNATURE_ID)
    signatory = _cac(signature, "SignatoryParty")
    _cbc(_cac(signatory, "PartyIdentification"), "ID", doc.proveedor.identificador.valor)
    _cbc(_cac(signatory, "PartyName"), "Name", doc.proveedor.razon_social)
    attachment = _cac(signature, "DigitalSignatureAttachment")
    _cbc(_cac(attachment, "ExternalReference"), "URI", f"#{SIGNATURE_ID}")


def _build_country(parent: etree._Element, codigo_pais: str) -> None:
    country = _cac(parent, "Country")
    _cbc(
        country,
        "IdentificationCode",
        codigo_pais or "PE",
        listID="ISO 3166-1",
        listAgencyName=UNECE_AGENCY,
        listName="Country",
    )


def _build_registration_address(parent: etree._Element, direccion: DireccionUBL) -> None:
    address = _cac(parent, "RegistrationAddress")
    if direccion.ubigeo:
        _cbc(address, "ID", direccion.ubigeo, schemeAgencyName="PE:INEI", schemeName="Ubigeos")
    _cbc(address, "AddressTypeCode", "0000", listAgencyName=LIST_AGENCY_SUNAT, listName="Establecimientos anexos")
    if direccion.provincia:
        _cbc(address, "CityName", direccion.provincia)
    if direccion.departamento:
        _cbc(address, "CountrySubentity", direccion.departamento)
    if direccion.distrito:
        _cbc(address, "District", direccion.distrito)
    if direccion.linea:
        _cbc(_cac(address, "AddressLine"), "Line", direccion.linea)
    _build_country(address, direccion.codigo_pais)


def _build_party(parent: etree._Element, tag: str, parte: ParteUBL) -> None:
    party = _cac(_cac(parent, tag), "Party")

    ident = parte.identificador
    attrs = {
        "schemeID": ident.scheme_id,
        "schemeName": ident.scheme_name,
        "schemeAgencyName": ident.scheme_agency_name,
    }
    if ident.scheme_uri:
        attrs["schemeURI"] = ident.scheme_uri
    _cbc(_cac(party, "PartyIdentification"), "ID", ident.valor, **attrs)

    if parte.nombre_comercial:
        _cbc(_cac(party, "PartyName"), "Name", parte.nombre_comercial)

    legal = _cac(party, "PartyLegalEntity")
    _cbc(legal, "RegistrationName", parte.razon_social)
    if parte.direccion is not None:
        _build_registration_address(legal, parte.direccion)

    if parte.telefono or parte.email:
        contact = _cac(party, "Contact")
        if parte.telefono:
            _cbc(contact, "Telephone", parte.telefono)
        if parte.email:
            _cbc(contact, "ElectronicMail", parte.email)


def _build_tax_total(parent: etree._Element, total: TotalImpuestoUBL, moneda: str) -> None:
    tax_total = _cac(parent, "TaxTotal")
    _amount(tax_total, "TaxAmount", total.monto, moneda)
    for subtotal in total.subtotales:
        sub = _cac(tax_total, "TaxSubtotal")
        _amount(sub, "TaxableAmount", subtotal.base, moneda)
        _amount(sub, "TaxAmount", subtotal.monto, moneda)
        category = _cac(sub, "TaxCategory")
        _cbc(category, "ID", subtotal.categoria)
        if subtotal.porcentaje is not None:
            _cbc(category, "Percent", _format_decimal(subtotal.porcentaje))
        if subtotal.motivo_exoneracion:
            _cbc(
                category,
                "TaxExemptionReasonCode",
                subtotal.motivo_exoneracion,
                listAgencyName=LIST_AGENCY_SUNAT,
                listName="Afectacion del IGV",
            )
        scheme = _cac(category, "TaxScheme")
        _cbc(
            scheme,
            "ID",
            subtotal.tributo_id,
            schemeID=SCHEME_ID_TRIBUTOS,
            schemeName=SCHEME_NAME_TRIBUTOS,
            schemeAgencyName=SCHEME_AGENCY_SUNAT,
        )
        _cbc(scheme, "Name", subtotal.tributo_nombre)
        _cbc(scheme, "TaxTypeCode", subtotal.tributo_codigo)


def _build_monetary_total(root: etree._Element, doc: DocumentoUBL) -> None:
    totales = doc.totales
    moneda = doc.moneda
    monetary = _cac(root, doc.variante.monetary_total_tag)
    _amount(monetary, "LineExtensionAmount", totales.valor_venta, moneda)
    _amount(monetary, "TaxExclusiveAmount", totales.total_sin_impuestos, moneda)
    _amount(monetary, "TaxInclusiveAmount", totales.total_con_impuestos, moneda)
    if totales.descuentos:
        _amount(monetary, "AllowanceTotalAmount", totales.descuentos, moneda)
    if totales.anticipos:
        _amount(monetary, "PrepaidAmount", totales.anticipos, moneda)
    if totales.redondeo:
        _amount(monetary, "PayableRoundingAmount", totales.redondeo, moneda)
    _amount(monetary, "PayableAmount", totales.importe_pagar, moneda)


def _build_line(root: etree._Element, doc: DocumentoUBL, linea: LineaUBL) -> None:
    variante = doc.variante
    moneda = doc.moneda
    line = _cac(root, variante.line_tag)
    _cbc(line, "ID", linea.id)
    _cbc(
        line,
        variante.quantity_tag,
        _format_decimal(linea.cantidad, 3),
        unitCode=linea.unidad,
        unitCodeListID="UN/ECE rec 20",
        unitCodeListAgencyName=UNECE_AGENCY,
    )
    _amount(line, "LineExtensionAmount", linea.valor_venta, moneda)

    if linea.precio_referencial is not None:
        pricing = _cac(line, "PricingReference")
        alternative = _cac(pricing, "AlternativeConditionPrice")
        _amount(alternative, "PriceAmount", linea.precio_referencial, moneda)
        _cbc(
            alternative,
            "PriceTypeCode",
            linea.tipo_precio,
            listName="Tipo de Precio",
            listAgencyName=LIST_AGENCY_SUNAT,
            listURI="urn:pe:gob:sunat:cpe:see:gem:catalogos:catalogo16",
        )

    if linea.impuestos is not None:
        _build_tax_total(line, linea.impuestos, moneda)

    item = _cac(line, "Item")
    _cbc(item, "Description", linea.descripcion)
    if linea.codigo:
        _cbc(_cac(item, "SellersItemIdentification"), "ID", linea.codigo)
    if linea.codigo_sunat:
        _cbc(
            _cac(item, "CommodityClassification"),
            "ItemClassificationCode",
            linea.codigo_sunat,
            listID="UNSPSC",
            listAgencyName="GS1 US",
            listName="Item Classification",
        )

    price = _cac(line, "Price")
    _amount(price, "PriceAmount", linea.precio, moneda)


def _build_root(doc: DocumentoUBL) -> etree._Element:
    variante = doc.variante
    nsmap = {
        None: variante.namespace,
        "cac": NS_CAC,
        "cbc": NS_CBC,
        "ds": NS_DS,
        "ext": NS_EXT,
    }
    root = etree.Element(f"{{{variante.namespace}}}{variante.root_tag}", nsmap=nsmap)

    _build_extensions(root)
    _cbc(root, "UBLVersionID", doc.version)
    _cbc(root, "CustomizationID", doc.customization_id)
    _cbc(root, "ID", doc.id)
    _cbc(root, "IssueDate", _format_fecha(doc.fecha_emision))
    if doc.fecha_vencimiento is not None:
        _cbc(root, "DueDate", _format_fecha(doc.fecha_vencimiento))

    type_attrs = {}
    if not variante.es_nota:
        type_attrs["listID"] = TIPO_OPERACION_VENTA_INTERNA
    type_attrs.update(
        listAgencyName=LIST_AGENCY_SUNAT,
        listName=LIST_NAME_TIPO_DOCUMENTO,
        listURI=LIST_URI_CATALOGO01,
    )
    _cbc(root, variante.type_code_tag, doc.tipo_codigo, **type_attrs)

    for nota in doc.notas:
        _cbc(root, "Note", nota)
    _cbc(root, "DocumentCurrencyCode", doc.moneda)
    _cbc(root, "LineCountNumeric", str(doc.cantidad_lineas))

    if doc.referencia is not None:
        discrepancy = _cac(root, "DiscrepancyResponse")
        _cbc(discrepancy, "ReferenceID", doc.referencia.serie_numero)
        _cbc(discrepancy, "ResponseCode", doc.referencia.codigo_motivo)
        _cbc(discrepancy, "Description", doc.referencia.descripcion_motivo)
        billing = _cac(root, "BillingReference")
        invoice_ref = _cac(billing, "InvoiceDocumentReference")
        _cbc(invoice_ref, "ID", doc.referencia.serie_numero)
        _cbc(invoice_ref, "DocumentTypeCode", doc.referencia.tipo)

    _build_signature_reference(root, doc)
    _build_party(root, "AccountingSupplierParty", doc.proveedor)
    _build_party(root, "AccountingCustomerParty", doc.cliente)

    for termino in doc.terminos_pago:
        terms = _cac(root, "PaymentTerms")
        _cbc(terms, "ID", "FormaPago")
        _cbc(terms, "PaymentMeansID", termino.medio)
        _amount(terms, "Amount", termino.monto, doc.moneda)
        if termino.fecha_vencimiento is not None:
            _cbc(terms, "PaymentDueDate", _format_fecha(termino.fecha_vencimiento))

    for total in doc.impuestos:
        _build_tax_total(root, total, doc.moneda)
    _build_monetary_total(root, doc)

    for linea in doc.lineas:
        _build_line(root, doc, linea)

    return root


# ============================================================
# API pública
# ============================================================


def build_ubl_xml(doc: DocumentoUBL) -> bytes:
    """
    Serializa un DocumentoUBL a bytes XML (UTF-8, con declaración).

    El orden de elementos sigue el esquema UBL 2.1; la salida es determinista
    para la misma entrada.
    """
    try:
        root = _build_root(doc)
        xml_bytes = etree.tostring(
            root,
            encoding="UTF-8",
            xml_declaration=True,
            pretty_print=False,
        )
    except SerializationError:
        raise
    except Exception as exc:
        logger.exception("Error serializando UBL %s: %s", doc.id, exc)
        raise SerializationError(f"No se pudo serializar el comprobante {doc.id}: {exc}") from exc

    logger.debug("XML UBL %s generado (%s bytes)", doc.id, len(xml_bytes))
    return xml_bytes


def generar_xml(documento: Documento) -> bytes:
    """Totales + conversión + serialización en un solo paso."""
    calcular_totales(documento)
    xml_bytes = build_ubl_xml(convertir_a_ubl(documento))
    documento.xml_generado = xml_bytes
    return xml_bytes
