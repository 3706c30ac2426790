"""
Static HTML page for exercising the API from a browser (GET /test).
"""

TEST_PAGE_HTML = """<!DOCTYPE html>
<html>
<head>
  <title>Task Completion API Test</title>
  <style>
    body { font-family: Arial, sans-serif; max-width: 800px; margin: 20px auto; padding: 20px; }
    .form-group { margin: 15px 0; }
    label { display: block; margin-bottom: 5px; font-weight: bold; }
    input { width: 100%; padding: 8px; border: 1px solid #ddd; border-radius: 4px; }
    button { background: #007bff; color: white; padding: 10px 20px; border: none; border-radius: 4px; cursor: pointer; margin: 5px; }
    .response { background: #f8f9fa; border: 1px solid #dee2e6; padding: 15px; margin: 15px 0; white-space: pre-wrap; font-family: monospace; }
    .success { border-color: #28a745; background-color: #d4edda; }
    .error { border-color: #dc3545; background-color: #f8d7da; }
  </style>
</head>
<body>
  <h1>Task Completion API Test</h1>

  <h2>Complete Task</h2>
  <div class="form-group">
    <label for="userAddress">User Address:</label>
    <input type="text" id="userAddress" placeholder="0x742d35Cc6535C9c80B5D7a8f1C8cd55c26A0f123">
  </div>
  <div class="form-group">
    <label for="timestamp">Timestamp:</label>
    <input type="number" id="timestamp" placeholder="1715418615">
  </div>
  <div class="form-group">
    <label for="tx">Transaction Hash (optional):</label>
    <input type="text" id="tx" placeholder="0x6539cac36a07f9c3d58ca0a4884c09ad05707f9d247fed3fb6853d1a86466f15">
  </div>
  <button onclick="completeTask()">Complete Task</button>
  <button onclick="fillSample()">Generate Sample Data</button>
  <div id="completeResponse" class="response" style="display: none;"></div>

  <h2>Check Status</h2>
  <div class="form-group">
    <label for="statusAddress">User Address:</label>
    <input type="text" id="statusAddress">
  </div>
  <button onclick="checkStatus()">Check Status</button>
  <div id="statusResponse" class="response" style="display: none;"></div>

  <h2>System Info</h2>
  <button onclick="show('systemResponse', fetch('/api/stats'))">Get Stats</button>
  <button onclick="show('systemResponse', fetch('/api/health'))">Health Check</button>
  <div id="systemResponse" class="response" style="display: none;"></div>

  <script>
    function randomHex(length) {
      return Array.from({length: length}, () => Math.floor(Math.random() * 16).toString(16)).join('');
    }

    function fillSample() {
      const address = '0x' + randomHex(40);
      document.getElementById('userAddress').value = address;
      document.getElementById('statusAddress').value = address;
      document.getElementById('timestamp').value = Math.floor(Date.now() / 1000);
      document.getElementById('tx').value = '0x' + randomHex(64);
    }

    async function show(elementId, pending) {
      const element = document.getElementById(elementId);
      element.style.display = 'block';
      try {
        const response = await pending;
        const data = await response.json();
        element.textContent = JSON.stringify(data, null, 2);
        element.className = 'response ' + (response.ok ? 'success' : 'error');
      } catch (error) {
        element.textContent = error.message;
        element.className = 'response error';
      }
    }

    function completeTask() {
      const userAddress = document.getElementById('userAddress').value;
      const timestamp = parseInt(document.getElementById('timestamp').value);
      const tx = document.getElementById('tx').value;
      if (!userAddress || !timestamp) {
        alert('Please fill in required fields');
        return;
      }
      show('completeResponse', fetch('/api/complete-task', {
        method: 'POST',
        headers: {'Content-Type': 'application/json'},
        body: JSON.stringify({userAddress, timestamp, tx: tx || undefined})
      }));
    }

    function checkStatus() {
      const address = document.getElementById('statusAddress').value;
      if (!address) {
        alert('Please enter a user address');
        return;
      }
      show('statusResponse', fetch('/api/task-status/' + encodeURIComponent(address)));
    }

    window.onload = fillSample;
  </script>
</body>
</html>
"""
