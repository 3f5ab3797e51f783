"""
RunSummary module for sync run summaries and notification content
"""
from datetime import datetime, timezone
from html import escape
from typing import Dict, Any, List
import uuid


class RunSummaryGenerator:
    """Generates the end-of-run summary and the success/failure judgement for one tenant run"""

    def generate_summary(self, run_results: Dict[str, Any]) -> Dict[str, Any]:
        """
        Generate complete run summary with statistics

        Args:
            run_results: Dictionary containing run results with structure:
                {
                    'tenant_code': str,
                    'direction': str,
                    'endpoints': List[Dict] with keys: table_name, status, pages_loaded,
                                 rows_inserted, error, start_time, end_time
                    'transfers': List[Dict] with keys: direction, remote_path, success, files, error
                    'errors': List[str] of run-level errors
                    'start_time': datetime,
                    'end_time': datetime
                }

        Returns:
            Dict containing the summary, with ``run_succeeded`` as the overall judgement
        """
        endpoints = run_results.get('endpoints', [])
        transfers = run_results.get('transfers', [])
        errors = list(run_results.get('errors', []))

        statistics = self.calculate_statistics(endpoints)
        failed_transfers = [t for t in transfers if not t.get('success')]

        run_succeeded = (
            not errors
            and statistics['failed_endpoints'] == 0
            and statistics['timed_out_endpoints'] == 0
            and not failed_transfers
        )

        start_time = run_results.get('start_time')
        end_time = run_results.get('end_time')

        return {
            'summary_id': str(uuid.uuid4()),
            'tenant_code': run_results.get('tenant_code', ''),
            'direction': run_results.get('direction', ''),
            'generated_timestamp': datetime.now(timezone.utc).isoformat(),
            'run_succeeded': run_succeeded,
            'statistics': statistics,
            'endpoint_details': [self._format_endpoint(e) for e in endpoints],
            'transfers': transfers,
            'errors': errors,
            'processing_start': start_time.isoformat() if start_time else None,
            'processing_end': end_time.isoformat() if end_time else None,
            'duration_seconds': round((end_time - start_time).total_seconds(), 2) if start_time and end_time else 0.0
        }

    def calculate_statistics(self, endpoints: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Calculate summary statistics from endpoint results

        Args:
            endpoints: Endpoint result dictionaries

        Returns:
            Dictionary containing calculated statistics
        """
        total = len(endpoints)
        completed = len([e for e in endpoints if e.get('status') == 'done'])
        aborted = len([e for e in endpoints if e.get('status') == 'aborted'])
        failed = len([e for e in endpoints if e.get('status') == 'failed'])
        timed_out = len([e for e in endpoints if e.get('status') == 'timed_out'])

        # Ceiling trips are a warning, not a failure
        success_rate = ((completed + aborted) / total * 100) if total > 0 else 0.0

        return {
            'total_endpoints': total,
            'completed_endpoints': completed,
            'aborted_endpoints': aborted,
            'failed_endpoints': failed,
            'timed_out_endpoints': timed_out,
            'success_rate_percent': round(success_rate, 2),
            'total_pages_loaded': sum(e.get('pages_loaded', 0) for e in endpoints),
            'total_rows_inserted': sum(e.get('rows_inserted', 0) for e in endpoints)
        }

    @staticmethod
    def build_subject(direction: str, tenant_code: str, succeeded: bool, run_date: datetime) -> str:
        status = "SUCCESS" if succeeded else "FAILURE"
        return f"{direction} Process {status} - {tenant_code} - {run_date:%Y-%m-%d}"

    def render_html(self, summary: Dict[str, Any]) -> str:
        """Render the notification body for a summary"""
        direction = summary.get('direction', '').lower()
        if summary.get('run_succeeded'):
            lead = f"The {direction} process completed successfully. Please review the attached log."
        else:
            lead = f"The {direction} process encountered errors. Please review the attached log."

        stats = summary['statistics']
        rows = "".join(
            f"<tr><td>{escape(e['table_name'])}</td><td>{escape(e['status'])}</td>"
            f"<td>{e['pages_loaded']}</td><td>{e['rows_inserted']}</td>"
            f"<td>{escape(e.get('error') or '')}</td></tr>"
            for e in summary.get('endpoint_details', [])
        )
        transfers = "".join(
            f"<li>{escape(t['direction'])} {escape(t['remote_path'])}: "
            f"{'OK' if t.get('success') else 'FAILED'} ({len(t.get('files', []))} files)"
            f"{' - ' + escape(t['error']) if t.get('error') else ''}</li>"
            for t in summary.get('transfers', [])
        )
        errors = "".join(f"<li>{escape(str(error))}</li>" for error in summary.get('errors', []))

        html = [
            f"<p>{escape(lead)}</p>",
            f"<p>Endpoints: {stats['completed_endpoints']} completed, {stats['aborted_endpoints']} aborted, "
            f"{stats['failed_endpoints']} failed, {stats['timed_out_endpoints']} timed out. "
            f"Rows inserted: {stats['total_rows_inserted']}.</p>",
        ]
        if rows:
            html.append(
                "<table><tr><th>Table</th><th>Status</th><th>Pages</th><th>Rows</th><th>Error</th></tr>"
                f"{rows}</table>"
            )
        if transfers:
            html.append(f"<p>File transfers:</p><ul>{transfers}</ul>")
        if errors:
            html.append(f"<p>Errors:</p><ul>{errors}</ul>")

        return "\n".join(html)

    def _format_endpoint(self, endpoint: Dict[str, Any]) -> Dict[str, Any]:
        """Format endpoint details for summary output"""
        start_time = endpoint.get('start_time')
        end_time = endpoint.get('end_time')
        return {
            'table_name': endpoint.get('table_name', ''),
            'status': endpoint.get('status', 'unknown'),
            'pages_loaded': endpoint.get('pages_loaded', 0),
            'rows_inserted': endpoint.get('rows_inserted', 0),
            'final_offset': endpoint.get('final_offset', 0),
            'error': endpoint.get('error'),
            'processing_time_seconds': round((end_time - start_time).total_seconds(), 2) if start_time and end_time else 0.0
        }
