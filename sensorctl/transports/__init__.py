"""Line-oriented transports to the terminal."""
