import asyncio
import unittest
from unittest import mock

from services.ai.analysis.config import AnalysisConfig
from services.ai.analysis.errors import AnalysisError, ErrorCode
from services.ai.analysis.input_guard import dns_probe, ensure_credential, ensure_online, normalize_query


class NormalizeQueryTests(unittest.TestCase):
    def test_trims_whitespace(self):
        req = normalize_query("   AAPL \n")
        self.assertEqual(req.query, "AAPL")

    def test_empty_and_blank_are_invalid(self):
        for raw in ("", "   ", "\t\n"):
            with self.assertRaises(AnalysisError) as ctx:
                normalize_query(raw)
            self.assertEqual(ctx.exception.code, ErrorCode.INVALID_INPUT)
            self.assertFalse(ctx.exception.is_retryable)

    def test_non_string_is_invalid(self):
        with self.assertRaises(AnalysisError) as ctx:
            normalize_query(None)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_INPUT)

    def test_length_bounds(self):
        with self.assertRaises(AnalysisError) as ctx:
            normalize_query("x" * 501)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_INPUT)
        self.assertIn("500", ctx.exception.message)

        with self.assertRaises(AnalysisError):
            normalize_query("AB", min_length=3)
        self.assertEqual(normalize_query("x" * 500).query, "x" * 500)

    def test_request_is_immutable(self):
        req = normalize_query("TSLA")
        with self.assertRaises(Exception):
            req.query = "MSFT"


class ConnectivityTests(unittest.TestCase):
    def test_offline_probe_raises(self):
        async def offline():
            return False

        with self.assertRaises(AnalysisError) as ctx:
            asyncio.run(ensure_online(offline))
        self.assertEqual(ctx.exception.code, ErrorCode.OFFLINE)
        self.assertFalse(ctx.exception.is_retryable)

    def test_online_probe_passes(self):
        async def online():
            return True

        self.assertIsNone(asyncio.run(ensure_online(online)))

    def test_dns_probe_failure_counts_as_offline(self):
        async def run():
            loop = asyncio.get_running_loop()
            with mock.patch.object(loop, "getaddrinfo", side_effect=OSError("nodename nor servname")):
                return await dns_probe("api.example.test", timeout_s=0.5)()

        self.assertFalse(asyncio.run(run()))

    def test_dns_probe_success(self):
        async def run():
            loop = asyncio.get_running_loop()
            with mock.patch.object(loop, "getaddrinfo", return_value=[("addr",)]):
                return await dns_probe("api.example.test", timeout_s=0.5)()

        self.assertTrue(asyncio.run(run()))


class CredentialTests(unittest.TestCase):
    def test_missing_api_key(self):
        with self.assertRaises(AnalysisError) as ctx:
            ensure_credential(AnalysisConfig(api_key=""))
        self.assertEqual(ctx.exception.code, ErrorCode.MISSING_CREDENTIAL)
        self.assertFalse(ctx.exception.is_retryable)

    def test_vertex_needs_project(self):
        with self.assertRaises(AnalysisError):
            ensure_credential(AnalysisConfig(use_vertex=True, project_id=""))
        ensure_credential(AnalysisConfig(use_vertex=True, project_id="my-project"))

    def test_config_validate_rejects_bad_numbers(self):
        with self.assertRaises(ValueError):
            AnalysisConfig(api_key="k", max_attempts=0).validate()
        with self.assertRaises(ValueError):
            AnalysisConfig(api_key="k", backoff_initial_s=4, backoff_max_s=1).validate()

    def test_connectivity_target_follows_backend(self):
        self.assertEqual(AnalysisConfig(api_key="k").connectivity_target, "generativelanguage.googleapis.com")
        vertex = AnalysisConfig(use_vertex=True, project_id="p", location="asia-south1")
        self.assertEqual(vertex.connectivity_target, "asia-south1-aiplatform.googleapis.com")
        vertex.location = "global"
        self.assertEqual(vertex.connectivity_target, "aiplatform.googleapis.com")
        vertex.connectivity_host = "proxy.internal"
        self.assertEqual(vertex.connectivity_target, "proxy.internal")


if __name__ == "__main__":
    unittest.main()
