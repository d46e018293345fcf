# facturacion/tests/test_lotes.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import threading
from unittest import mock

from django.test import TestCase

from facturacion.models import Comprobante, Lote
from facturacion.services.sunat.documento import EstadoProceso
from facturacion.services.sunat.lotes import (
    crear_lote,
    iniciar_lote,
    obtener_estado_lote,
    procesar_lote_sync,
)
from facturacion.services.sunat.workflow import WorkflowError
from facturacion.tests.utils import config_simulacion, crear_comprobante, key_material_prueba

ID_INEXISTENTE = 999999


class CrearLoteTests(TestCase):
    def test_crear_lote(self) -> None:
        lote = crear_lote(["1", 2], descripcion="Ventas del día")

        self.assertEqual(lote.comprobantes, [1, 2])
        self.assertEqual(lote.total_documentos, 2)
        self.assertEqual(lote.estado, Lote.Estado.PENDIENTE)
        self.assertEqual(lote.porcentaje_avance, 0.0)

    def test_lote_vacio(self) -> None:
        with self.assertRaises(WorkflowError):
            crear_lote([])

    def test_iniciar_lote_despacha_al_confirmar(self) -> None:
        comprobante = crear_comprobante()

        with mock.patch("facturacion.tasks.procesar_lote_task") as task:
            task.delay.return_value = mock.Mock(id="task-123")
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                lote = iniciar_lote([comprobante.pk], cert_path="/certs/empresa.p12", cert_password="secreto")
                task.delay.assert_not_called()

        self.assertEqual(len(callbacks), 1)
        task.delay.assert_called_once_with(lote.pk, "/certs/empresa.p12", "secreto")
        lote.refresh_from_db()
        self.assertEqual(lote.task_id, "task-123")


class ProcesarLoteTests(TestCase):
    def setUp(self) -> None:
        self.key_material = key_material_prueba()
        self.config = config_simulacion()

    def _validos(self, cantidad: int) -> list:
        return [crear_comprobante(numero=str(n)).pk for n in range(1, cantidad + 1)]

    def test_lote_con_fallos_continua(self) -> None:
        invalido = crear_comprobante(numero="90", moneda="GBP")
        ids = self._validos(3) + [invalido.pk, ID_INEXISTENTE]
        lote = crear_lote(ids)

        estado = procesar_lote_sync(lote, self.key_material, config=self.config)

        self.assertEqual(estado["estado"], Lote.Estado.COMPLETADO_CON_ERRORES)
        self.assertEqual(estado["documentos_procesados"], 5)
        self.assertEqual(estado["documentos_exitosos"], 3)
        self.assertEqual(estado["documentos_fallidos"], 2)
        self.assertEqual(estado["porcentaje_avance"], 100.0)
        self.assertIsNotNone(estado["fecha_inicio"])
        self.assertIsNotNone(estado["fecha_fin"])

        resultados = {r["id"]: r for r in estado["resultados"]}
        self.assertEqual(list(resultados), ids)
        self.assertEqual(resultados[invalido.pk]["etapa"], "VALIDACION")
        self.assertEqual(resultados[ID_INEXISTENTE]["etapa"], "LOTE")
        self.assertEqual(
            Comprobante.objects.filter(estado=EstadoProceso.ACEPTADO).count(), 3
        )

    def test_lote_sin_fallos(self) -> None:
        lote = crear_lote(self._validos(2))

        estado = procesar_lote_sync(lote, self.key_material, config=self.config)

        self.assertEqual(estado["estado"], Lote.Estado.COMPLETADO)
        self.assertEqual(estado["documentos_exitosos"], 2)
        self.assertEqual(estado["documentos_fallidos"], 0)

    def test_sin_certificado_todos_fallan(self) -> None:
        lote = crear_lote(self._validos(2))

        estado = procesar_lote_sync(lote, None, config=self.config)

        self.assertEqual(estado["documentos_fallidos"], 2)
        self.assertEqual({r["etapa"] for r in estado["resultados"]}, {"FIRMA"})
        self.assertEqual(Comprobante.objects.filter(estado=EstadoProceso.ERROR).count(), 2)

    def test_error_inesperado_no_detiene_el_lote(self) -> None:
        lote = crear_lote(self._validos(2))

        with mock.patch(
            "facturacion.services.sunat.lotes.emitir_comprobante_sync",
            side_effect=[RuntimeError("fallo inesperado"), {"ok": True, "estado": EstadoProceso.ACEPTADO, "etapa": "SUNAT", "mensajes": []}],
        ):
            estado = procesar_lote_sync(lote, self.key_material, config=self.config)

        self.assertEqual(estado["documentos_procesados"], 2)
        self.assertEqual(estado["documentos_exitosos"], 1)
        self.assertEqual(estado["resultados"][0]["detalle"], "fallo inesperado")

    def test_cancelacion_detiene_el_lote(self) -> None:
        lote = crear_lote(self._validos(2))
        cancelacion = threading.Event()
        cancelacion.set()

        estado = procesar_lote_sync(lote, self.key_material, config=self.config, cancelacion=cancelacion)

        self.assertEqual(estado["documentos_procesados"], 0)
        self.assertEqual(estado["estado"], Lote.Estado.COMPLETADO_CON_ERRORES)
        self.assertEqual(Comprobante.objects.filter(estado=EstadoProceso.PENDIENTE).count(), 2)

    def test_obtener_estado_lote(self) -> None:
        lote = crear_lote([1, 2], descripcion="Pendiente")

        estado = obtener_estado_lote(lote.pk)

        self.assertEqual(estado["id"], lote.pk)
        self.assertEqual(estado["estado"], Lote.Estado.PENDIENTE)
        self.assertEqual(estado["resultados"], [])
        self.assertIsNone(estado["fecha_inicio"])
