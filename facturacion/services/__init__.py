# facturacion/services/__init__.py
"""
Servicios de dominio del módulo de facturación electrónica.

Los componentes del pipeline SUNAT viven en facturacion/services/sunat/.
"""
