from countapp import create_app

app = create_app()

if __name__ == "__main__":
    # Runs on all interfaces so field devices on the local network can reach it
    app.run(host="0.0.0.0", port=5000, debug=True)
