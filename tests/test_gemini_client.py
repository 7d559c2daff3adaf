import asyncio
import time
import unittest

from google.genai import errors as genai_errors

from services.ai.analysis.errors import AnalysisError, ErrorCode
from services.ai.analysis.gemini_client import GeminiAnalysisClient, extract_citations
from services.ai.analysis.prompt_builder import build_prompt
from analysis_fixtures import GROUNDING, FakeSdk, make_config, sdk_response


def _generate(client, query="AAPL"):
    return asyncio.run(client.generate(build_prompt(query)))


class GeminiClientSuccessTests(unittest.TestCase):
    def test_single_call_with_grounding(self):
        sdk = FakeSdk([sdk_response('{"symbol": "AAPL"}', grounding=GROUNDING)])
        reply = _generate(GeminiAnalysisClient(make_config(), client=sdk))

        self.assertEqual(len(sdk.calls), 1)
        self.assertEqual(reply.text, '{"symbol": "AAPL"}')
        self.assertEqual(reply.finish_reason, "STOP")
        self.assertEqual(reply.grounding_metadata, GROUNDING)
        self.assertEqual(len(reply.citations), 2)

    def test_request_shape(self):
        sdk = FakeSdk([sdk_response("{}")])
        _generate(GeminiAnalysisClient(make_config(model="gemini-2.5-flash"), client=sdk), "TSLA")

        call = sdk.calls[0]
        self.assertEqual(call["model"], "gemini-2.5-flash")
        self.assertEqual(call["contents"], "TSLA")
        cfg = call["config"]
        self.assertIn('"TSLA"', cfg.system_instruction)
        self.assertEqual(len(cfg.tools), 1)
        self.assertIsNotNone(cfg.tools[0].google_search)
        self.assertEqual(cfg.thinking_config.thinking_budget, 2048)

    def test_web_and_thinking_can_be_disabled(self):
        sdk = FakeSdk([sdk_response("{}")])
        _generate(GeminiAnalysisClient(make_config(use_web=False, thinking_budget=0), client=sdk))
        cfg = sdk.calls[0]["config"]
        self.assertIsNone(cfg.tools)
        self.assertIsNone(cfg.thinking_config)

    def test_unspecified_finish_reason_is_clean(self):
        sdk = FakeSdk([sdk_response("{}", finish_reason=None)])
        reply = _generate(GeminiAnalysisClient(make_config(), client=sdk))
        self.assertIsNone(reply.finish_reason)


class ThinkingFallbackTests(unittest.TestCase):
    MODEL = "gemini-2.5-flash-thinking-fallback-test"

    def tearDown(self):
        GeminiAnalysisClient._thinking_unsupported_models.discard(self.MODEL)

    def test_retries_once_without_thinking(self):
        rejected = genai_errors.ClientError(
            400, {"error": {"code": 400, "message": "Thinking is not supported for this model.", "status": "INVALID_ARGUMENT"}}
        )
        sdk = FakeSdk([rejected, sdk_response("{}")])
        _generate(GeminiAnalysisClient(make_config(model=self.MODEL), client=sdk))

        self.assertEqual(len(sdk.calls), 2)
        self.assertIsNotNone(sdk.calls[0]["config"].thinking_config)
        self.assertIsNone(sdk.calls[1]["config"].thinking_config)
        self.assertIn(self.MODEL, GeminiAnalysisClient._thinking_unsupported_models)


class GeminiClientRefusalTests(unittest.TestCase):
    def _expect(self, response, code):
        sdk = FakeSdk([response])
        with self.assertRaises(AnalysisError) as ctx:
            _generate(GeminiAnalysisClient(make_config(), client=sdk))
        self.assertEqual(ctx.exception.code, code)
        self.assertFalse(ctx.exception.is_retryable)
        return ctx.exception

    def test_safety_finish_reasons(self):
        for reason in ("SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"):
            self._expect(sdk_response("", finish_reason=reason), ErrorCode.SAFETY_REFUSAL)

    def test_recitation(self):
        self._expect(sdk_response("{}", finish_reason="RECITATION"), ErrorCode.RECITATION_REFUSAL)

    def test_other_early_stop(self):
        err = self._expect(sdk_response('{"symbol": "AA', finish_reason="MAX_TOKENS"), ErrorCode.MODEL_STOPPED)
        self.assertIn("MAX_TOKENS", err.detail)

    def test_prompt_blocked(self):
        self._expect(sdk_response("", block_reason="PROHIBITED_CONTENT"), ErrorCode.SAFETY_REFUSAL)


class GeminiClientFailureTests(unittest.TestCase):
    def test_sdk_error_classified_with_cause(self):
        raw = genai_errors.ClientError(429, {"error": {"code": 429, "message": "Resource exhausted", "status": "RESOURCE_EXHAUSTED"}})
        sdk = FakeSdk([raw])
        with self.assertRaises(AnalysisError) as ctx:
            _generate(GeminiAnalysisClient(make_config(), client=sdk))
        self.assertEqual(ctx.exception.code, ErrorCode.RATE_LIMITED)
        self.assertTrue(ctx.exception.is_retryable)
        self.assertIs(ctx.exception.__cause__, raw)

    def test_timeout_abandons_call(self):
        sdk = FakeSdk([sdk_response("{}")], delay_s=0.3)
        client = GeminiAnalysisClient(make_config(request_timeout_s=0.05), client=sdk)

        started = time.perf_counter()
        with self.assertRaises(AnalysisError) as ctx:
            _generate(client)
        elapsed = time.perf_counter() - started

        self.assertEqual(ctx.exception.code, ErrorCode.TIMEOUT)
        self.assertTrue(ctx.exception.is_retryable)
        self.assertLess(elapsed, 1.0)


class CitationExtractionTests(unittest.TestCase):
    def test_unique_http_links_only(self):
        payload = {
            "grounding_chunks": [
                {"web": {"uri": "https://a.example/x", "title": "A"}},
                {"web": {"uri": "ftp://not-http.example"}},
                {"web": {"uri": "https://a.example/x", "title": "again"}},
                {"web": {"uri": "https://b.example/y"}},
            ]
        }
        self.assertEqual(
            extract_citations(payload),
            [{"url": "https://a.example/x", "title": "A"}, {"url": "https://b.example/y"}],
        )
        self.assertEqual(extract_citations(None), [])


if __name__ == "__main__":
    unittest.main()
