import argparse
import json
import logging
import sys
import threading

from flask import Flask, Response, current_app, jsonify, render_template_string, request

from .collector import CpuSampler, MetricsCollector, get_system_info
from .config import get_settings
from .dashboard import FETCH_INTERVAL, MAX_DATA_POINTS, DashboardController

NO_CACHE = 'no-cache, no-store, must-revalidate'
FORBIDDEN_MESSAGE = 'Direct access is not permitted.'


def is_ajax(req):
    return req.headers.get('X-Requested-With', '').lower() == 'xmlhttprequest'


def create_app(settings=None):
    settings = settings or get_settings()
    app = Flask(__name__)
    app.config['HOSTPULSE_SETTINGS'] = settings

    cpu_sampler = None
    if settings.cpu_sampling == 'background':
        cpu_sampler = CpuSampler(settings.proc_path('stat'), settings.cpu_sample_period)
        cpu_sampler.start()
    collector = MetricsCollector(settings, cpu_sampler=cpu_sampler)
    app.extensions['hostpulse_collector'] = collector

    @app.before_request
    def require_ajax_header():
        """Keep browsers from navigating straight to the JSON endpoints"""
        if not request.path.startswith('/api/') or not settings.require_ajax_header:
            return None
        if not is_ajax(request):
            current_app.logger.info("Rejected direct request to %s from %s", request.path, request.remote_addr)
            return Response(FORBIDDEN_MESSAGE, status=403, mimetype='text/plain')
        return None

    @app.after_request
    def disable_caching(response):
        if request.path.startswith('/api/'):
            response.headers['Cache-Control'] = NO_CACHE
        return response

    @app.route('/')
    def index():
        return render_template_string(
            HTML_TEMPLATE,
            sensor_url='/api/metrics',
            fetch_interval=int(FETCH_INTERVAL * 1000),
            max_points=MAX_DATA_POINTS,
            show_syslog=bool(settings.syslog_path),
        )

    @app.route('/api/metrics')
    def get_metrics():
        """One snapshot of host metrics and auth log activity"""
        snapshot = collector.collect()
        return jsonify(snapshot.to_dict())

    @app.route('/api/system_info')
    def system_info():
        return jsonify(get_system_info())

    return app


def serve(settings, args):
    host = args.host or settings.host
    port = args.port or settings.port
    app = create_app(settings)

    print("=" * 70)
    print(" Host Pulse ".center(70))
    print("=" * 70)
    print("\n Live host metrics and auth log activity")
    print(f"\n Auth log:     {settings.auth_log_path}")
    print(f" Syslog:       {settings.syslog_path or 'disabled'}")
    print(f" CPU sampling: {settings.cpu_sampling}")
    print(f"\n Server starting at: http://{host}:{port}")
    print("=" * 70)
    app.run(debug=False, host=host, port=port, threaded=True)


def snapshot(settings, args):
    collector = MetricsCollector(settings)
    print(json.dumps(collector.collect().to_dict(), indent=4))


def watch(settings, args):
    controller = DashboardController(args.url or settings.dashboard_url)
    if args.once:
        ok = controller.tick()
        print(controller.render())
        return 0 if ok else 1

    def redraw(ctl):
        # Clear the terminal and home the cursor
        sys.stdout.write('\033[2J\033[H')
        sys.stdout.write(ctl.render() + '\n')
        sys.stdout.flush()

    stop_event = threading.Event()
    try:
        controller.run(stop_event, on_tick=redraw)
    except KeyboardInterrupt:
        stop_event.set()
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog='hostpulse', description='Live host metrics dashboard')
    subparsers = parser.add_subparsers(dest='command', required=True, help='Available commands')

    serve_parser = subparsers.add_parser('serve', help='Run the metrics server and dashboard page')
    serve_parser.add_argument('--host', default=None)
    serve_parser.add_argument('--port', type=int, default=None)
    serve_parser.set_defaults(func=serve)

    snapshot_parser = subparsers.add_parser('snapshot', help='Print one metrics snapshot as JSON')
    snapshot_parser.set_defaults(func=snapshot)

    watch_parser = subparsers.add_parser('watch', help='Follow a metrics server from the terminal')
    watch_parser.add_argument('--url', default=None, help='Metrics endpoint URL')
    watch_parser.add_argument('--once', action='store_true', help='Fetch and print a single update')
    watch_parser.set_defaults(func=watch)

    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValueError as e:
        parser.error(str(e))
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    return args.func(settings, args) or 0


HTML_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Host Pulse</title>
    <link href="https://fonts.googleapis.com/css2?family=Orbitron:wght@400;700;900&family=Rajdhani:wght@300;500;700&display=swap" rel="stylesheet">
    <script src="https://cdnjs.cloudflare.com/ajax/libs/Chart.js/3.9.1/chart.min.js"></script>
    <style>
        * {
            margin: 0;
            padding: 0;
            box-sizing: border-box;
        }

        body {
            font-family: 'Rajdhani', sans-serif;
            background: #0A0E1A;
            color: #E0E7FF;
            overflow-x: hidden;
        }

        .container {
            display: grid;
            grid-template-rows: 80px 1fr 60px;
            min-height: 100vh;
        }

        .header {
            background: rgba(15, 23, 42, 0.9);
            border-bottom: 2px solid rgba(59, 130, 246, 0.3);
            display: flex;
            justify-content: space-between;
            align-items: center;
            padding: 0 30px;
            box-shadow: 0 4px 20px rgba(0, 0, 0, 0.5);
        }

        .header-title {
            font-family: 'Orbitron', sans-serif;
            font-size: 26px;
            font-weight: 700;
            color: #3B82F6;
            text-shadow: 0 0 10px rgba(59, 130, 246, 0.5);
        }

        .header-title.error {
            color: #EF4444;
            text-shadow: 0 0 10px rgba(239, 68, 68, 0.5);
        }

        .header-info {
            display: flex;
            gap: 25px;
            font-size: 13px;
        }

        .main-content {
            padding: 30px;
        }

        .metrics-grid {
            display: grid;
            grid-template-columns: repeat(auto-fit, minmax(280px, 1fr));
            gap: 20px;
            margin-bottom: 30px;
        }

        .glass-card {
            background: rgba(30, 41, 59, 0.6);
            border-radius: 15px;
            padding: 25px;
            border: 1px solid rgba(59, 130, 246, 0.3);
            box-shadow: 0 8px 32px rgba(0, 0, 0, 0.3);
            position: relative;
        }

        .card-title {
            font-size: 14px;
            font-weight: 500;
            color: #94A3B8;
            margin-bottom: 15px;
            letter-spacing: 2px;
            text-transform: uppercase;
        }

        .card-value {
            font-family: 'Orbitron', sans-serif;
            font-size: 32px;
            font-weight: 700;
            margin-bottom: 10px;
            color: #3B82F6;
        }

        .chart-container {
            height: 260px;
        }

        .chart-container.wide {
            grid-column: 1 / -1;
        }

        .chart-wrapper {
            position: relative;
            height: 170px;
        }

        .log-panel {
            font-family: monospace;
            font-size: 12px;
            white-space: pre;
            max-height: 320px;
            overflow: auto;
            color: #CBD5E1;
        }

        .footer {
            background: rgba(15, 23, 42, 0.9);
            border-top: 2px solid rgba(59, 130, 246, 0.3);
            display: flex;
            justify-content: space-between;
            align-items: center;
            padding: 0 30px;
            font-size: 12px;
            color: #64748B;
        }
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <div class="header-title" id="dashboardTitle">Connecting...</div>
            <div class="header-info">
                <span>LAST PID <span id="lastPidDisplay">N/A</span></span>
                <span>FAILED LOGINS (1H) <span id="failedLoginsDisplay">N/A</span></span>
                <span>UPDATED <span id="lastUpdateDisplay">--</span></span>
            </div>
        </div>

        <div class="main-content">
            <div class="metrics-grid">
                <div class="glass-card chart-container">
                    <div class="card-title">CPU USAGE</div>
                    <div class="card-value" id="cpuValue">--</div>
                    <div class="chart-wrapper"><canvas id="cpuChart"></canvas></div>
                </div>
                <div class="glass-card chart-container">
                    <div class="card-title">LOAD 1M</div>
                    <div class="card-value" id="loadAvg1Value">--</div>
                    <div class="chart-wrapper"><canvas id="loadAvg1Chart"></canvas></div>
                </div>
                <div class="glass-card chart-container">
                    <div class="card-title">LOAD 5M</div>
                    <div class="card-value" id="loadAvg5Value">--</div>
                    <div class="chart-wrapper"><canvas id="loadAvg5Chart"></canvas></div>
                </div>
                <div class="glass-card chart-container">
                    <div class="card-title">LOAD 15M</div>
                    <div class="card-value" id="loadAvg15Value">--</div>
                    <div class="chart-wrapper"><canvas id="loadAvg15Chart"></canvas></div>
                </div>
                <div class="glass-card chart-container">
                    <div class="card-title">RUNNING PROCESSES</div>
                    <div class="card-value" id="runningProcessesValue">--</div>
                    <div class="chart-wrapper"><canvas id="runningProcessesChart"></canvas></div>
                </div>
                <div class="glass-card chart-container">
                    <div class="card-title">TOTAL PROCESSES</div>
                    <div class="card-value" id="totalProcessesValue">--</div>
                    <div class="chart-wrapper"><canvas id="totalProcessesChart"></canvas></div>
                </div>
            </div>

            <div class="metrics-grid">
                <div class="glass-card chart-container wide">
                    <div class="card-title">MEMORY</div>
                    <div class="card-value" id="memoryValue">--</div>
                    <div class="chart-wrapper"><canvas id="memoryChart"></canvas></div>
                </div>
                <div class="glass-card chart-container">
                    <div class="card-title">DISK /</div>
                    <div class="card-value" id="diskUsageValue">--</div>
                    <div class="chart-wrapper"><canvas id="diskUsageChart"></canvas></div>
                </div>
            </div>

            <div class="glass-card">
                <div class="card-title">AUTH LOG</div>
                <div class="log-panel" id="authLogDisplay"></div>
            </div>
            {% if show_syslog %}
            <div class="glass-card" style="margin-top: 20px;">
                <div class="card-title">SYSLOG</div>
                <div class="log-panel" id="syslogDisplay"></div>
            </div>
            {% endif %}
        </div>

        <div class="footer">
            <div id="hostInfo"></div>
            <div>Refresh every {{ fetch_interval // 1000 }}s</div>
        </div>
    </div>

    <script>
        const MAX_DATA_POINTS = {{ max_points }};
        const FETCH_INTERVAL = {{ fetch_interval }};
        const SENSOR_URL = '{{ sensor_url }}';
        const AJAX_HEADERS = { 'X-Requested-With': 'XMLHttpRequest' };

        const dashboardTitleElement = document.getElementById('dashboardTitle');
        const lastPidElement = document.getElementById('lastPidDisplay');
        const lastUpdateElement = document.getElementById('lastUpdateDisplay');
        const failedLoginsElement = document.getElementById('failedLoginsDisplay');
        const authLogElement = document.getElementById('authLogDisplay');
        const syslogElement = {% if show_syslog %}document.getElementById('syslogDisplay'){% else %}null{% endif %};
        const diskUsageValueElement = document.getElementById('diskUsageValue');
        const memoryValueElement = document.getElementById('memoryValue');

        const chartOptions = {
            responsive: true,
            maintainAspectRatio: false,
            plugins: { legend: { display: false } },
            scales: {
                y: {
                    beginAtZero: true,
                    grid: { color: 'rgba(59, 130, 246, 0.1)' },
                    ticks: { color: '#64748B' }
                },
                x: {
                    grid: { color: 'rgba(59, 130, 246, 0.1)' },
                    ticks: { color: '#64748B', maxTicksLimit: 6 }
                }
            },
            animation: { duration: 0 }
        };

        const seriesConfigs = {
            cpu: { canvasId: 'cpuChart', valueId: 'cpuValue', dataKey: 'cpuUsage', unit: '%', color: [239, 68, 68], yMax: 100 },
            loadAvg1: { canvasId: 'loadAvg1Chart', valueId: 'loadAvg1Value', dataKey: 'loadAvg1', unit: '', color: [236, 72, 153] },
            loadAvg5: { canvasId: 'loadAvg5Chart', valueId: 'loadAvg5Value', dataKey: 'loadAvg5', unit: '', color: [245, 158, 11] },
            loadAvg15: { canvasId: 'loadAvg15Chart', valueId: 'loadAvg15Value', dataKey: 'loadAvg15', unit: '', color: [234, 179, 8] },
            running: { canvasId: 'runningProcessesChart', valueId: 'runningProcessesValue', dataKey: 'runningProcesses', unit: '', color: [59, 130, 246], integer: true },
            total: { canvasId: 'totalProcessesChart', valueId: 'totalProcessesValue', dataKey: 'totalProcesses', unit: '', color: [139, 92, 246], integer: true }
        };

        function initializeChart(config) {
            const [r, g, b] = config.color;
            const y = { ...chartOptions.scales.y, ticks: { ...chartOptions.scales.y.ticks } };
            if(config.yMax) y.max = config.yMax;
            if(config.integer) y.ticks.precision = 0;

            return new Chart(document.getElementById(config.canvasId), {
                type: 'line',
                data: {
                    labels: [],
                    datasets: [{
                        data: [],
                        borderColor: `rgb(${r}, ${g}, ${b})`,
                        backgroundColor: `rgba(${r}, ${g}, ${b}, 0.1)`,
                        borderWidth: 2,
                        pointRadius: 0,
                        fill: true,
                        tension: 0.4
                    }]
                },
                options: { ...chartOptions, scales: { ...chartOptions.scales, y: y } }
            });
        }

        function initializeMemoryChart() {
            const dataset = (label, color) => ({
                label: label,
                data: [],
                borderColor: color,
                backgroundColor: color.replace(')', ', 0.5)').replace('rgb', 'rgba'),
                pointRadius: 0,
                fill: true,
                tension: 0.4
            });
            return new Chart(document.getElementById('memoryChart'), {
                type: 'line',
                data: {
                    labels: [],
                    datasets: [
                        dataset('Used', 'rgb(239, 68, 68)'),
                        dataset('Cached', 'rgb(59, 130, 246)'),
                        dataset('Free', 'rgb(16, 185, 129)')
                    ]
                },
                options: {
                    ...chartOptions,
                    plugins: {
                        legend: { display: true, position: 'bottom', labels: { color: '#94A3B8' } }
                    },
                    scales: {
                        ...chartOptions.scales,
                        y: { ...chartOptions.scales.y, stacked: true, min: 0 }
                    }
                }
            });
        }

        function initializeDiskChart() {
            return new Chart(document.getElementById('diskUsageChart'), {
                type: 'doughnut',
                data: {
                    labels: ['Used Space', 'Free Space'],
                    datasets: [{
                        data: [0, 100],
                        backgroundColor: ['rgba(239, 68, 68, 0.8)', 'rgba(16, 185, 129, 0.8)'],
                        borderColor: ['#EF4444', '#10B981'],
                        borderWidth: 2
                    }]
                },
                options: {
                    responsive: true,
                    maintainAspectRatio: false,
                    plugins: { legend: { display: true, position: 'bottom', labels: { color: '#94A3B8' } } }
                }
            });
        }

        // Widgets are owned here and touched only by updateDashboard()
        const lineCharts = {};
        for(const key in seriesConfigs) {
            lineCharts[key] = initializeChart(seriesConfigs[key]);
        }
        const memoryChart = initializeMemoryChart();
        const diskUsageChart = initializeDiskChart();

        function pushPoint(chart, label, values) {
            chart.data.labels.push(label);
            chart.data.datasets.forEach((dataset, i) => dataset.data.push(values[i]));
            if(chart.data.labels.length > MAX_DATA_POINTS) {
                chart.data.labels.shift();
                chart.data.datasets.forEach(dataset => dataset.data.shift());
            }
        }

        function usedPercent(used, total) {
            return total > 0 ? ((used / total) * 100).toFixed(1) : 0;
        }

        function showLog(element, lines) {
            if(!element || !Array.isArray(lines)) return;
            element.textContent = lines.join('\\n');
            element.scrollTop = element.scrollHeight;
        }

        function updateDashboard(data) {
            const timestamp = new Date(data.timestamp);
            const label = timestamp.toLocaleTimeString();

            dashboardTitleElement.textContent = data.hostname;
            dashboardTitleElement.classList.remove('error');
            lastPidElement.textContent = data.lastPid ?? 'N/A';
            lastUpdateElement.textContent = label;
            failedLoginsElement.textContent = data.failedLoginsLastHour ?? 'N/A';

            showLog(authLogElement, data.authLog);
            showLog(syslogElement, data.syslog);

            for(const key in seriesConfigs) {
                const config = seriesConfigs[key];
                const value = data[config.dataKey];
                if(value === null || value === undefined) continue;
                pushPoint(lineCharts[key], label, [value]);
                document.getElementById(config.valueId).textContent = `${value}${config.unit}`;
                lineCharts[key].update('none');
            }

            if(data.diskUsed !== null && data.diskFree !== null) {
                diskUsageChart.data.datasets[0].data = [data.diskUsed, data.diskFree];
                diskUsageValueElement.textContent = `${usedPercent(data.diskUsed, data.diskUsed + data.diskFree)}% Used`;
                diskUsageChart.update('none');
            }

            if(data.memTotal !== null) {
                pushPoint(memoryChart, label, [data.memUsed, data.memCached, data.memFree]);
                memoryChart.options.scales.y.max = data.memTotal;
                if(data.memUsed !== null) {
                    memoryValueElement.textContent = `${usedPercent(data.memUsed, data.memTotal)}% Used`;
                }
                memoryChart.update('none');
            }
        }

        async function fetchLatestData() {
            try {
                // Cache-busting timestamp
                const response = await fetch(`${SENSOR_URL}?t=${Date.now()}`, { headers: AJAX_HEADERS });
                if(!response.ok) throw new Error(`HTTP error! status: ${response.status}`);
                const data = await response.json();
                if(!data || !data.hostname) throw new Error('Received invalid data from sensor');
                updateDashboard(data);
            } catch(error) {
                console.error('Could not fetch data:', error);
                dashboardTitleElement.textContent = 'Connection Error';
                dashboardTitleElement.classList.add('error');
            }
        }

        async function loadHostInfo() {
            try {
                const response = await fetch('/api/system_info', { headers: AJAX_HEADERS });
                const info = await response.json();
                document.getElementById('hostInfo').textContent =
                    `${info.platform} | ${info.cpu_cores_logical ?? '?'} cores | booted ${info.boot_time ?? 'N/A'}`;
            } catch(error) {
                console.error('Error loading system info:', error);
            }
        }

        loadHostInfo();
        fetchLatestData();
        setInterval(fetchLatestData, FETCH_INTERVAL);
    </script>
</body>
</html>
"""

if __name__ == '__main__':
    sys.exit(main())
