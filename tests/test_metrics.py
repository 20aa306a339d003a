import io

import httpx
import pytest

from repobench.benchmarks.metrics import (
    MetricsScrapeError,
    MetricsScraper,
    extract_samples,
    print_samples,
)

from .conftest import ENDPOINT, METRICS_TEXT

SUMMARY_TEXT = """\
# TYPE api_request_duration_seconds summary
api_request_duration_seconds{operation="getObject",quantile="0.5"} 0.01
api_request_duration_seconds{operation="getObject",quantile="0.99"} 0.2
api_request_duration_seconds_sum{operation="getObject"} 3.0
api_request_duration_seconds_count{operation="getObject"} 100
"""


class TestExtractSamples:
    def test_keeps_only_monitored_operations(self):
        samples = extract_samples(METRICS_TEXT)

        assert sorted(s.operation for s in samples) == ["getObject", "uploadObject"]

    def test_groups_histogram_series(self):
        samples = {s.operation: s for s in extract_samples(METRICS_TEXT)}
        upload = samples["uploadObject"]

        assert upload.name == "api_request_duration_seconds"
        assert upload.labels == {"code": "201", "method": "post", "operation": "uploadObject"}
        assert upload.count == 10
        assert upload.sum == pytest.approx(1.5)
        assert upload.buckets == {"0.1": 7, "+Inf": 10}

    def test_summary_quantiles(self):
        (sample,) = extract_samples(SUMMARY_TEXT)

        assert sample.quantiles == {"0.5": 0.01, "0.99": 0.2}
        assert sample.count == 100

    def test_custom_family_and_operations(self):
        samples = extract_samples(METRICS_TEXT, operations={"listObjects"})

        assert [s.operation for s in samples] == ["listObjects"]
        assert extract_samples(METRICS_TEXT, family="missing_family") == []


class TestMetricsScraper:
    def test_scrape(self, http_client):
        samples = MetricsScraper(ENDPOINT, http_client).scrape()

        assert len(samples) == 2

    def test_http_error_raises(self, http_client, fake_service):
        fake_service.metrics_status = 500

        with pytest.raises(MetricsScrapeError, match="failed to fetch"):
            MetricsScraper(ENDPOINT, http_client).scrape()

    def test_transport_error_raises(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(refuse))
        with pytest.raises(MetricsScrapeError):
            MetricsScraper(ENDPOINT, client).scrape()

    @pytest.mark.parametrize(
        "text",
        [
            'api_request_duration_seconds_count{operation="getObject"} notanumber\n',
            "# TYPE api_request_duration_seconds histogram\n"
            'api_request_duration_seconds_bucket{operation="getObject"} 1\n',
        ],
        ids=["bad-value", "bucket-without-le"],
    )
    def test_parse_error_raises(self, http_client, fake_service, text):
        fake_service.metrics_text = text

        with pytest.raises(MetricsScrapeError, match="failed to parse"):
            MetricsScraper(ENDPOINT, http_client).scrape()


def test_print_samples_writes_one_line_per_sample():
    out = io.StringIO()

    print_samples(extract_samples(METRICS_TEXT), stream=out)

    lines = out.getvalue().splitlines()
    assert len(lines) == 2
    assert all(line.startswith("api_request_duration_seconds {") for line in lines)
    assert any("operation='getObject'" in line for line in lines)
