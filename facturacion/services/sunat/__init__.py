# facturacion/services/sunat/__init__.py
"""
Pipeline de comprobantes electrónicos SUNAT:

- documento / validators: modelo de negocio y validaciones.
- totals: cálculo de totales e impuestos.
- converter / ubl / xml_builder: conversión a UBL 2.1 y serialización XML.
- canonical / signer / certificado: forma canónica y firma XMLDSig.
- packager: ZIP + base64 para sendBill.
- client / responses: cliente SOAP del billService y lectura del CDR.
- workflow / lotes: orquestación por comprobante y por lote.
"""
