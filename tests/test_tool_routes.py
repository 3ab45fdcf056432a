"""
Tests for Tool API Routes.

Billed runs go through the full app: SQLite ledger, run log and an
httpx.MockTransport standing in for the workflow webhooks.
"""

import httpx
import pytest


class WebhookStub:
    """Serves canned webhook replies and records requests."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.reply: httpx.Response | Exception = httpx.Response(200, json={})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


@pytest.fixture
async def webhook(app_context) -> WebhookStub:
    """Route the app's webhook calls to a stub."""
    stub = WebhookStub()
    await app_context.tool_http_client.aclose()
    app_context.tool_http_client = httpx.AsyncClient(transport=httpx.MockTransport(stub.handler))
    return stub


class TestToolCatalog:
    """GET /api/tools."""

    async def test_lists_all_tools(self, client):
        """The catalog lists four tools with costs and no usage yet."""
        response = await client.get("/api/tools")

        assert response.status_code == 200
        tools = {tool["id"]: tool for tool in response.json()["tools"]}
        assert {tool_id: tool["creditCost"] for tool_id, tool in tools.items()} == {
            "tool-keyword-research": 1,
            "tool-blog-factory": 5,
            "tool-audio-transcriber": 10,
            "tool-linkedin-post-generator": 2,
        }
        assert all(tool["usageCount"] == 0 for tool in tools.values())

    async def test_usage_counts_follow_runs(self, client, webhook):
        """A completed run increments that tool's usage count."""
        webhook.reply = httpx.Response(200, json={"postText": "Hello"})
        await client.post("/api/tools/linkedin-posts", json={"keyword": "ai"})

        response = await client.get("/api/tools")

        tools = {tool["id"]: tool for tool in response.json()["tools"]}
        assert tools["tool-linkedin-post-generator"]["usageCount"] == 1
        assert tools["tool-linkedin-post-generator"]["lastRunDate"] is not None
        assert tools["tool-blog-factory"]["usageCount"] == 0


class TestLinkedInPosts:
    """POST /api/tools/linkedin-posts."""

    async def test_run_debits_and_returns_output(self, client, webhook, balance_of):
        """Success charges 2 credits and returns the decoded post."""
        webhook.reply = httpx.Response(
            200, json=[{"choices": [{"message": {"content": "Hello post text"}}]}]
        )

        response = await client.post("/api/tools/linkedin-posts", json={"keyword": "ai"})

        assert response.status_code == 200
        assert response.json() == {
            "workflowId": "tool-linkedin-post-generator",
            "creditsCharged": 2,
            "newBalance": 498,
            "output": {"postText": "Hello post text", "hashtags": []},
        }
        assert await balance_of() == 498

    async def test_run_is_logged(self, client, webhook):
        """The run log records input, summary and output."""
        webhook.reply = httpx.Response(200, json={"postText": "Hello post text"})
        await client.post("/api/tools/linkedin-posts", json={"keyword": "ai"})

        (run,) = (await client.get("/api/account/runs")).json()["runs"]

        assert run["status"] == "Completed"
        assert run["creditCostAtRun"] == 2
        assert run["inputDetails"] == {"linkedinKeyword": "ai"}
        assert run["outputSummary"].startswith("LinkedIn post generated. Preview: Hello post text")

    async def test_upstream_failure_is_not_charged(self, client, webhook, balance_of):
        """A failing webhook answers 502, charges nothing and logs a Failed run."""
        webhook.reply = httpx.Response(500, text="Workflow execution failed")

        response = await client.post("/api/tools/linkedin-posts", json={})

        assert response.status_code == 502
        assert response.json()["error"] == "Tool workflow failed."
        assert await balance_of() == 500

        (run,) = (await client.get("/api/account/runs")).json()["runs"]
        assert run["status"] == "Failed"
        assert "Workflow execution failed" in run["errorDetails"]

    async def test_malformed_json_is_not_charged(self, client, webhook, balance_of):
        """A 200 with a non-JSON body fails, charges nothing and logs the raw body."""
        webhook.reply = httpx.Response(200, text="not json")

        response = await client.post("/api/tools/linkedin-posts", json={"keyword": "ai"})

        assert response.status_code == 502
        assert "not json" in response.json()["details"]
        assert await balance_of() == 500

        (run,) = (await client.get("/api/account/runs")).json()["runs"]
        assert run["status"] == "Failed"
        assert run["creditCostAtRun"] == 2
        assert "Raw response: not json" in run["errorDetails"]

    async def test_deeply_nested_json_is_not_charged(self, client, webhook, balance_of):
        """JSON too deep to decode answers 502 and logs a Failed run."""
        webhook.reply = httpx.Response(200, text="[" * 100_000 + "]" * 100_000)

        response = await client.post("/api/tools/linkedin-posts", json={"keyword": "ai"})

        assert response.status_code == 502
        assert response.json()["error"] == "Tool workflow failed."
        assert await balance_of() == 500

        (run,) = (await client.get("/api/account/runs")).json()["runs"]
        assert run["status"] == "Failed"
        assert "Failed to parse JSON response" in run["errorDetails"]


class TestKeywordSuggestions:
    """POST /api/tools/keyword-suggestions."""

    async def test_insufficient_credits_skips_webhook(self, client, webhook, seed):
        """With no credits the webhook is never called."""
        await seed(credits=0)

        response = await client.post(
            "/api/tools/keyword-suggestions", json={"topic": "seo", "language": "en"}
        )

        assert response.status_code == 402
        assert response.json()["error"] == "Insufficient credits."
        assert webhook.requests == []

    async def test_partial_output_is_kept(self, client, webhook):
        """Invalid suggestions are dropped; the run still succeeds."""
        webhook.reply = httpx.Response(
            200, json={"suggestions": [{"keyword": "seo audit"}, {"keyword": ""}]}
        )

        response = await client.post("/api/tools/keyword-suggestions", json={"topic": "seo"})

        assert response.status_code == 200
        assert response.json()["output"] == {"suggestions": [{"keyword": "seo audit"}]}
        assert response.json()["creditsCharged"] == 1

    async def test_timeout(self, client, webhook, balance_of):
        """A webhook timeout answers 504 without charging."""
        webhook.reply = httpx.ReadTimeout("timed out")

        response = await client.post("/api/tools/keyword-suggestions", json={"topic": "seo"})

        assert response.status_code == 504
        assert await balance_of() == 500

    async def test_short_topic_rejected(self, client, webhook):
        """Topics under three characters fail validation."""
        response = await client.post("/api/tools/keyword-suggestions", json={"topic": "ai"})

        assert response.status_code == 422
        assert webhook.requests == []


class TestBlogPosts:
    """POST /api/tools/blog-posts."""

    async def test_blog_post(self, client, webhook):
        """The blog output includes the raw response."""
        webhook.reply = httpx.Response(
            200, text='{"slug": "rank", "title": "Rank", "meta": "m", "content": "c"}'
        )

        response = await client.post(
            "/api/tools/blog-posts", json={"researchQuery": "how to rank a blog"}
        )

        assert response.status_code == 200
        output = response.json()["output"]
        assert output["title"] == "Rank"
        assert '"slug": "rank"' in output["rawResponse"]
        assert response.json()["newBalance"] == 495

    async def test_unrecognized_response(self, client, webhook, balance_of):
        """A response without blog fields answers 502."""
        webhook.reply = httpx.Response(200, json={"message": "Workflow was started"})

        response = await client.post(
            "/api/tools/blog-posts", json={"researchQuery": "how to rank a blog"}
        )

        assert response.status_code == 502
        assert await balance_of() == 500


class TestAudioTranscriptions:
    """POST /api/tools/audio-transcriptions."""

    async def test_upload(self, client, webhook):
        """The uploaded file is forwarded and its metadata logged."""
        webhook.reply = httpx.Response(
            200,
            json={"transcriptSummary": {"title": "Standup", "summary": "Short.", "keyPoints": ["a"]}},
        )

        response = await client.post(
            "/api/tools/audio-transcriptions",
            files={"audioData": ("standup.mp3", b"ID3 audio bytes", "audio/mpeg")},
        )

        assert response.status_code == 200
        assert response.json()["creditsCharged"] == 10
        assert response.json()["output"]["transcriptSummary"]["keyPoints"] == ["a"]
        assert b'filename="standup.mp3"' in webhook.requests[0].content

        (run,) = (await client.get("/api/account/runs")).json()["runs"]
        assert run["inputDetails"] == {
            "audioFileName": "standup.mp3",
            "audioFileType": "audio/mpeg",
            "audioFileSize": 15,
        }
        assert run["outputSummary"] == 'Summary generated: "Standup"'

    async def test_missing_file(self, client, webhook):
        """Requests without audioData fail validation."""
        response = await client.post("/api/tools/audio-transcriptions")

        assert response.status_code == 422
