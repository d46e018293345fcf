# facturacion/services/sunat/canonical.py
# -*- coding: utf-8 -*-
"""
Forma canónica simplificada usada para digest y firma.

NO es C14N W3C completo: no reordena atributos ni normaliza declaraciones de
namespaces. Sobre el árbol XML:

- elimina la declaración XML y todo lo que esté fuera del elemento raíz
- elimina comentarios
- elimina nodos de texto que solo contienen espacios entre etiquetas
- recorta espacios al inicio y al final

Los documentos con DOCTYPE se rechazan con CanonicalizationError.

La misma función se aplica al documento completo, a ds:SignedInfo y a ds:KeyInfo.
Aplicarla sobre una salida ya canónica no cambia nada.
"""
from __future__ import annotations

import copy
import logging

from lxml import etree

from facturacion.services.sunat.exceptions import CanonicalizationError

logger = logging.getLogger("facturacion.sunat")


def _parser() -> etree.XMLParser:
    return etree.XMLParser(
        remove_comments=True,
        resolve_entities=False,
        no_network=True,
    )


def parse_xml(xml_bytes: bytes) -> etree._Element:
    """
    Parsea bytes XML con el parser seguro del módulo (sin comentarios).

    Rechaza documentos con DOCTYPE: las entidades no se expanden y la salida
    serializada no volvería a parsear.
    """
    if isinstance(xml_bytes, str):
        xml_bytes = xml_bytes.encode("utf-8")
    root = etree.fromstring(xml_bytes, parser=_parser())
    docinfo = root.getroottree().docinfo
    if docinfo.doctype or docinfo.internalDTD is not None:
        raise CanonicalizationError("El XML no debe declarar DOCTYPE ni entidades")
    return root


def _colapsar_espacios(root: etree._Element) -> None:
    for node in root.iter():
        if isinstance(node.tag, str) and node.text is not None and not node.text.strip():
            node.text = None
        if node is not root and node.tail is not None and not node.tail.strip():
            node.tail = None


def _serializar(root: etree._Element) -> bytes:
    return etree.tostring(root, encoding="UTF-8", xml_declaration=False).strip()


def canonicalizar_arbol(root: etree._Element) -> bytes:
    """Forma canónica de un árbol ya parseado. Modifica ``root`` in situ."""
    _colapsar_espacios(root)
    return _serializar(root)


def canonicalizar(xml_bytes: bytes) -> bytes:
    if not xml_bytes or not xml_bytes.strip():
        raise CanonicalizationError("No hay contenido XML para canonicalizar")
    try:
        root = parse_xml(xml_bytes)
    except etree.XMLSyntaxError as exc:
        logger.warning("XML mal formado al canonicalizar: %s", exc)
        raise CanonicalizationError(f"XML mal formado: {exc}") from exc
    return canonicalizar_arbol(root)


def canonicalizar_elemento(element: etree._Element) -> bytes:
    """
    Canonicaliza un subárbol fuera de su documento.

    La copia declara solo los namespaces que el subárbol usa, así el resultado
    es el mismo esté el nodo suelto o incrustado en el comprobante.
    """
    try:
        standalone = copy.deepcopy(element)
        standalone.tail = None
        return canonicalizar(etree.tostring(standalone, encoding="UTF-8"))
    except CanonicalizationError:
        raise
    except Exception as exc:
        logger.exception("Error canonicalizando nodo %s: %s", element.tag, exc)
        raise CanonicalizationError(f"No se pudo canonicalizar {element.tag}: {exc}") from exc
